from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends

import app.schemas.blockchain as schemas
from app.core import wallet_crypto
from app.core.dependencies import get_ledger
from app.core.errors import BlockchainError, ValidationError
from app.db.base import utc_now
from app.schemas.my_base_model import DataResponse
from app.services.blockchain import SolanaRpcClient

router = APIRouter()
group_tags: List[str] = ["Blockchain"]


def require_ledger(ledger: Optional[SolanaRpcClient] = Depends(get_ledger)) -> SolanaRpcClient:
    if ledger is None:
        raise BlockchainError("Ledger client is not configured")
    return ledger


@router.get("/epoch", tags=group_tags, response_model=DataResponse[schemas.EpochInfo])
def get_current_epoch(ledger: SolanaRpcClient = Depends(require_ledger)) -> DataResponse[schemas.EpochInfo]:
    """Auction epoch of the current time: floor(unix seconds / epoch length)."""
    epoch = ledger.epoch_for(utc_now())
    start = datetime.fromtimestamp(epoch * ledger.epoch_length, timezone.utc).replace(tzinfo=None)
    return DataResponse[schemas.EpochInfo](
        data=schemas.EpochInfo(
            epoch=epoch,
            epoch_length_seconds=ledger.epoch_length,
            epoch_start=start,
            epoch_end=start + timedelta(seconds=ledger.epoch_length),
        )
    )


@router.get(
    "/transactions/{signature}",
    tags=group_tags,
    response_model=DataResponse[schemas.TransactionStatus],
)
def get_transaction_status(
    signature: str,
    ledger: SolanaRpcClient = Depends(require_ledger),
) -> DataResponse[schemas.TransactionStatus]:
    """Status of a transaction as seen by the cluster; found is false until it lands."""
    result = ledger.get_signature_status(signature)
    if result is None:
        return DataResponse[schemas.TransactionStatus](data=schemas.TransactionStatus(signature=signature))
    return DataResponse[schemas.TransactionStatus](
        data=schemas.TransactionStatus(
            signature=signature,
            found=True,
            slot=result["slot"],
            confirmations=result["confirmations"],
            confirmation_status=result["confirmation_status"],
            error=str(result["err"]) if result["err"] else None,
        )
    )


@router.get(
    "/accounts/{wallet_address}/balance",
    tags=group_tags,
    response_model=DataResponse[schemas.AccountBalance],
)
def get_account_balance(
    wallet_address: str,
    ledger: SolanaRpcClient = Depends(require_ledger),
) -> DataResponse[schemas.AccountBalance]:
    """SOL balance of a wallet at the configured commitment."""
    if not wallet_crypto.is_valid_solana_address(wallet_address):
        raise ValidationError("Invalid Solana wallet address format")
    balance = ledger.get_balance(wallet_address)
    return DataResponse[schemas.AccountBalance](
        data=schemas.AccountBalance(
            wallet_address=wallet_address,
            balance=balance,
            balance_formatted=f"{balance:.4f} SOL",
        )
    )
