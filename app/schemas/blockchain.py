from datetime import datetime
from typing import Optional

from app.schemas.my_base_model import CustomBaseModel


class EpochInfo(CustomBaseModel):
    epoch: int = 0
    epoch_length_seconds: int = 0
    epoch_start: datetime
    epoch_end: datetime


class TransactionStatus(CustomBaseModel):
    signature: str = ""
    found: bool = False
    slot: Optional[int] = None
    confirmations: Optional[int] = None
    confirmation_status: Optional[str] = None
    error: Optional[str] = None


class AccountBalance(CustomBaseModel):
    wallet_address: str = ""
    balance: float = 0.0
    balance_formatted: str = ""


class ComponentHealth(CustomBaseModel):
    status: str = ""
    latency_ms: Optional[float] = None
    detail: Optional[str] = None


class HealthCheck(CustomBaseModel):
    """Response model for /health"""

    status: str = "ok"
    version: str = ""
    database: ComponentHealth
    ledger: Optional[ComponentHealth] = None
