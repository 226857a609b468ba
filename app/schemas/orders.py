from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.my_base_model import CustomBaseModel


class OrderCreateRequest(BaseModel):
    """Request model for placing a bid or a supply"""

    model_config = ConfigDict(populate_by_name=True)

    timeslot_id: str = Field(..., alias="timeslotId", description="Timeslot the order is placed on")
    price: float = Field(..., description="Bid price, or reserve price for a supply (> 0)")
    quantity: float = Field(..., description="Energy quantity in kWh (> 0)")


class OrderStatusUpdateRequest(BaseModel):
    """Status change reported by the ledger observer"""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(..., description="PENDING, CONFIRMED, MATCHED, CANCELLED or EXPIRED")
    tx_signature: Optional[str] = Field(None, alias="txSignature", description="On-chain transaction signature")
    escrow_account: Optional[str] = Field(None, alias="escrowAccount", description="Escrow account address")


class OrderTimeslot(CustomBaseModel):
    id: str = ""
    start_time: datetime
    end_time: datetime
    status: str = ""


class Order(CustomBaseModel):
    """Bid or supply as returned by the API"""

    id: str = ""
    user_id: str = ""
    wallet_address: Optional[str] = None
    timeslot_id: str = ""
    price: float = 0.0
    quantity: float = 0.0
    status: str = ""
    tx_signature: Optional[str] = None
    escrow_account: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    timeslot: Optional[OrderTimeslot] = None

    @classmethod
    def from_model(cls, order) -> "Order":
        timeslot = None
        if order.timeslot is not None:
            timeslot = OrderTimeslot(
                id=order.timeslot.id,
                start_time=order.timeslot.start_time,
                end_time=order.timeslot.end_time,
                status=order.timeslot.status,
            )
        return cls(
            id=order.id,
            user_id=order.user_id,
            wallet_address=order.user.wallet_address if order.user is not None else None,
            timeslot_id=order.timeslot_id,
            price=order.price,
            quantity=order.quantity,
            status=order.status,
            tx_signature=order.tx_signature,
            escrow_account=order.escrow_account,
            created_at=order.created_at,
            updated_at=order.updated_at,
            timeslot=timeslot,
        )


class OrderStats(CustomBaseModel):
    """Aggregates over confirmed and matched orders of one timeslot"""

    total_orders: int = 0
    total_quantity: float = 0.0
    average_price: float = 0.0
    highest_price: float = 0.0
    lowest_price: float = 0.0
