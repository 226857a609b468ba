import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from app.core.config import settings
from app.core.dependencies import get_ledger
from app.core.errors import BlockchainError
from app.schemas.blockchain import ComponentHealth, HealthCheck
from app.services.blockchain import SolanaRpcClient

logger = logging.getLogger(__name__)

router = APIRouter()
group_tags: List[str] = ["Health"]


@router.get("/health", tags=group_tags, response_model=HealthCheck)
def get_health(
    request: Request,
    ledger: Optional[SolanaRpcClient] = Depends(get_ledger),
) -> HealthCheck:
    """Database health, plus ledger health when a ledger client is configured.

    A database failure answers 503; a ledger failure only marks the service degraded.
    """
    database = request.app.state.database.health_check()
    result = HealthCheck(
        version=settings.VERSION,
        database=ComponentHealth(status=database["status"], latency_ms=database["latency_ms"]),
    )
    if ledger is not None:
        try:
            health = ledger.health_check()
            result.ledger = ComponentHealth(status=health["status"], latency_ms=health["latency_ms"])
        except BlockchainError as exc:
            logger.warning("Ledger health check failed: %s", exc.message)
            result.ledger = ComponentHealth(status="unhealthy", detail=exc.message)
        if result.ledger.status != "healthy":
            result.status = "degraded"
    return result
