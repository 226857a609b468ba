import enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import declared_attr, relationship

from app.db.base import Base, new_id, utc_now


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MATCHED = "MATCHED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class OrderKind(str, enum.Enum):
    BID = "bid"
    SUPPLY = "supply"


TERMINAL_ORDER_STATUSES = {OrderStatus.CANCELLED, OrderStatus.MATCHED, OrderStatus.EXPIRED}
ACTIVE_ORDER_STATUSES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}
PUBLIC_ORDER_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.MATCHED}

# PENDING -> CONFIRMED -> MATCHED; PENDING|CONFIRMED -> CANCELLED or EXPIRED
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.EXPIRED},
    OrderStatus.CONFIRMED: {OrderStatus.MATCHED, OrderStatus.CANCELLED, OrderStatus.EXPIRED},
    OrderStatus.MATCHED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.EXPIRED: set(),
}


class OrderMixin:
    """Columns shared by bids and supplies."""

    id = Column(String(36), primary_key=True, default=new_id)
    price = Column(Float, nullable=False)
    quantity = Column(Float, nullable=False)
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    tx_signature = Column(String(128), nullable=True)
    escrow_account = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    @declared_attr
    def user_id(cls):
        return Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    @declared_attr
    def timeslot_id(cls):
        return Column(String(36), ForeignKey("timeslots.id"), nullable=False, index=True)

    @declared_attr
    def user(cls):
        return relationship("User", lazy="joined")

    @declared_attr
    def timeslot(cls):
        return relationship("Timeslot", lazy="joined")


class Bid(OrderMixin, Base):
    """Buy-side order against a timeslot."""

    __tablename__ = "bids"


class Supply(OrderMixin, Base):
    """Sell-side order against a timeslot; price is the reserve price."""

    __tablename__ = "supplies"


ORDER_MODELS = {
    OrderKind.BID: Bid,
    OrderKind.SUPPLY: Supply,
}
