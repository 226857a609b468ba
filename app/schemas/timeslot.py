from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.my_base_model import CustomBaseModel


class TimeslotCreateRequest(BaseModel):
    """Request model for opening a new timeslot"""

    model_config = ConfigDict(populate_by_name=True)

    start_time: datetime = Field(..., alias="startTime", description="Window start (UTC)")
    end_time: datetime = Field(..., alias="endTime", description="Window end (UTC), after startTime")
    total_energy: float = Field(..., alias="totalEnergy", description="Energy offered in the window (kWh)")


class TimeslotUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_energy: float = Field(..., alias="totalEnergy", description="New energy total (kWh)")


class TimeslotSettleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clearing_price: float = Field(..., alias="clearingPrice", description="Clearing price computed on-chain")


class Timeslot(CustomBaseModel):
    """Timeslot as returned by the API"""

    id: str = ""
    start_time: datetime
    end_time: datetime
    status: str = ""
    total_energy: float = 0.0
    clearing_price: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, timeslot) -> "Timeslot":
        return cls(
            id=timeslot.id,
            start_time=timeslot.start_time,
            end_time=timeslot.end_time,
            status=timeslot.status,
            total_energy=timeslot.total_energy,
            clearing_price=timeslot.clearing_price,
            created_at=timeslot.created_at,
            updated_at=timeslot.updated_at,
        )


class TimeslotStats(CustomBaseModel):
    """Order book totals for one timeslot (cancelled orders excluded)"""

    timeslot: Timeslot
    total_bids: int = 0
    total_supplies: int = 0
    total_demand: float = 0.0
    total_supply: float = 0.0
    average_bid_price: float = 0.0
    average_supply_price: float = 0.0


class ExpiredOrders(CustomBaseModel):
    bids: int = 0
    supplies: int = 0
