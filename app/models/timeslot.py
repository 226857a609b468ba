import enum

from sqlalchemy import Column, DateTime, Float, Index, String

from app.db.base import Base, new_id, utc_now


class TimeslotStatus(str, enum.Enum):
    OPEN = "OPEN"
    SEALED = "SEALED"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


# OPEN -> SEALED -> SETTLED, OPEN|SEALED -> CANCELLED
TIMESLOT_TRANSITIONS = {
    TimeslotStatus.OPEN: {TimeslotStatus.SEALED, TimeslotStatus.CANCELLED},
    TimeslotStatus.SEALED: {TimeslotStatus.SETTLED, TimeslotStatus.CANCELLED},
    TimeslotStatus.SETTLED: set(),
    TimeslotStatus.CANCELLED: set(),
}


class Timeslot(Base):
    """Model for timeslots table
    Example:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "start_time": "2024-01-01T12:00:00",
        "end_time": "2024-01-01T13:00:00",
        "total_energy": 1000.0,
        "clearing_price": null,
        "status": "OPEN"
    }
    """

    __tablename__ = "timeslots"
    __table_args__ = (Index("ix_timeslots_start_end", "start_time", "end_time"),)

    id = Column(String(36), primary_key=True, default=new_id)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(16), nullable=False, default=TimeslotStatus.OPEN.value, index=True)
    clearing_price = Column(Float, nullable=True)
    total_energy = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
