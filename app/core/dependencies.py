"""
FastAPI Authentication Dependencies
This module provides FastAPI dependency functions that can be injected into route handlers
to validate the bearer token and hand the handler an explicit SessionContext.
Usage in endpoints:
    @router.get("/protected")
    def protected_route(session: SessionContext = Depends(get_current_session)):
        return {"user": session.user_id}

    @router.get("/public")
    def public_route(session: Optional[SessionContext] = Depends(get_optional_session)):
        # session is None for anonymous callers
        ...
Flow:
1. Client sends request with Authorization: Bearer <token> header
2. FastAPI calls get_current_session() / get_optional_session()
3. _extract_token() pulls the token out of the header
4. WalletAuthService.validate_token() checks the JWT and loads the user
5. The handler receives a SessionContext; nothing is attached to the request
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthenticationError, AuthorizationError
from app.core.logging_cfg import mask_wallet
from app.db.gateway import PersistenceGateway
from app.db.session import get_db
from app.models.orders import OrderKind
from app.services.blockchain import SolanaRpcClient
from app.services.orders import OrderService
from app.services.timeslots import TimeslotService
from app.services.wallet_auth import AuthUser, WalletAuthService

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Identity of the caller for the duration of one request."""

    user: AuthUser
    is_operator: bool = False

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def wallet_address(self) -> str:
        return self.user.wallet_address


def is_operator_wallet(wallet_address: str) -> bool:
    return wallet_address in settings.admin_wallets


def get_gateway(db: Session = Depends(get_db)) -> PersistenceGateway:
    return PersistenceGateway(db)


def get_ledger(request: Request) -> Optional[SolanaRpcClient]:
    return getattr(request.app.state, "ledger", None)


def get_auth_service(gateway: PersistenceGateway = Depends(get_gateway)) -> WalletAuthService:
    return WalletAuthService(gateway)


def get_timeslot_service(gateway: PersistenceGateway = Depends(get_gateway)) -> TimeslotService:
    return TimeslotService(gateway)


def get_bid_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    ledger: Optional[SolanaRpcClient] = Depends(get_ledger),
) -> OrderService:
    return OrderService(gateway, OrderKind.BID, ledger=ledger, check_balance=settings.ORDER_BALANCE_CHECK)


def get_supply_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    ledger: Optional[SolanaRpcClient] = Depends(get_ledger),
) -> OrderService:
    return OrderService(gateway, OrderKind.SUPPLY, ledger=ledger, check_balance=settings.ORDER_BALANCE_CHECK)


def _extract_token(authorization: Optional[str]) -> str:
    """
    Extract the JWT from the Authorization header.
    Supports both "Bearer <token>" and plain token formats.
    Raises:
        AuthenticationError: If Authorization header is missing or empty
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    authorization = authorization.strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    else:
        token = authorization
    if not token:
        raise AuthenticationError("Invalid authorization header")
    return token


def validate_credential(auth_service: WalletAuthService, authorization: Optional[str]) -> SessionContext:
    token = _extract_token(authorization)
    user = auth_service.validate_token(token)
    return SessionContext(user=user, is_operator=is_operator_wallet(user.wallet_address))


def get_current_session(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    auth_service: WalletAuthService = Depends(get_auth_service),
) -> SessionContext:
    """Mandatory authentication: a missing or bad token ends the request with 401."""
    try:
        return validate_credential(auth_service, authorization)
    except AuthenticationError as exc:
        logger.warning("Authentication failed: %s", exc.message)
        raise


def get_optional_session(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    auth_service: WalletAuthService = Depends(get_auth_service),
) -> Optional[SessionContext]:
    """Optional authentication: anything short of a valid token means anonymous."""
    if not authorization:
        return None
    try:
        return validate_credential(auth_service, authorization)
    except AuthenticationError as exc:
        logger.debug("Optional auth: token ignored (%s)", exc.message)
        return None


def require_operator(session: SessionContext = Depends(get_current_session)) -> SessionContext:
    if not session.is_operator:
        logger.warning("Non-operator %s attempted an operator action", mask_wallet(session.wallet_address))
        raise AuthorizationError("Operator privileges required")
    return session
