"""
Wallet authentication service.

Two-phase challenge/response login:

    initialize_auth(wallet)                      -> nonce + message to sign
    verify_and_authenticate(wallet, sig, msg)    -> access token + user

A nonce is consumed at most once. Consumption, user creation and the
last-login update run in one transaction, so a failed verification leaves no
trace except the best-effort cleanup done in phase one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from app.core import wallet_crypto
from app.core.config import settings
from app.core.errors import AuthenticationError, MessageFormatError, ValidationError
from app.core.jwt_utils import create_access_token, verify_token
from app.core.logging_cfg import mask_wallet
from app.db.base import utc_now
from app.db.gateway import PersistenceGateway
from app.models.users import User

logger = logging.getLogger(__name__)

# every verification failure reports the same message; the reason is only logged
INVALID_NONCE = "Invalid or expired nonce"


@dataclass
class NonceChallenge:
    nonce: str
    message: str
    expires_at: datetime


@dataclass
class AuthUser:
    id: str
    wallet_address: str
    created_at: datetime
    last_login_at: Optional[datetime]

    @classmethod
    def from_model(cls, user: User) -> "AuthUser":
        return cls(
            id=user.id,
            wallet_address=user.wallet_address,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


@dataclass
class AuthResult:
    access_token: str
    expires_in: int
    user: AuthUser


def _validate_wallet_address(wallet_address: Optional[str]) -> str:
    if not wallet_address or not wallet_address.strip():
        raise ValidationError("walletAddress is required")
    wallet_address = wallet_address.strip()
    if not wallet_crypto.is_valid_solana_address(wallet_address):
        raise ValidationError("Invalid Solana wallet address format")
    return wallet_address


class WalletAuthService:
    def __init__(self, gateway: PersistenceGateway, clock: Callable[[], datetime] = utc_now):
        self.gateway = gateway
        self.clock = clock

    def initialize_auth(self, wallet_address: str) -> NonceChallenge:
        """Step 1: issue a nonce and the message the wallet has to sign."""
        wallet_address = _validate_wallet_address(wallet_address)

        now = self.clock()
        nonce = wallet_crypto.generate_nonce()
        expires_at = wallet_crypto.generate_nonce_expiration(now)
        message = wallet_crypto.create_sign_message(wallet_address, nonce)

        self._cleanup_expired_nonces(wallet_address, now)

        self.gateway.create_auth_nonce(wallet_address, nonce, expires_at)

        logger.info(
            "Authentication initialized for wallet %s, expires at %s",
            mask_wallet(wallet_address), expires_at.isoformat(),
        )
        return NonceChallenge(nonce=nonce, message=message, expires_at=expires_at)

    def verify_and_authenticate(self, wallet_address: str, signature: str, message: str) -> AuthResult:
        """Step 2: check the signed nonce and issue an access token."""
        if not wallet_address or not signature or not message:
            raise ValidationError("Missing required authentication parameters")
        wallet_address = _validate_wallet_address(wallet_address)

        try:
            parsed = wallet_crypto.parse_signed_message(message)
        except MessageFormatError:
            logger.warning("Unparseable sign message from %s", mask_wallet(wallet_address))
            raise AuthenticationError(INVALID_NONCE)

        now = self.clock()
        nonce_record = self.gateway.find_valid_nonce(parsed.nonce, now)
        if nonce_record is None:
            logger.warning("Unknown, used or expired nonce presented by %s", mask_wallet(wallet_address))
            raise AuthenticationError(INVALID_NONCE)

        if nonce_record.wallet_address != wallet_address or (
            parsed.wallet_address is not None and parsed.wallet_address != wallet_address
        ):
            logger.warning("Nonce presented by a different wallet %s", mask_wallet(wallet_address))
            raise AuthenticationError(INVALID_NONCE)

        verification = wallet_crypto.verify_signature(message, signature, wallet_address)
        if not verification.is_valid:
            logger.warning("Signature rejected for %s: %s", mask_wallet(wallet_address), verification.error)
            raise AuthenticationError(INVALID_NONCE)

        nonce_id = nonce_record.id

        def consume_nonce_and_login(gateway: PersistenceGateway) -> User:
            if not gateway.mark_nonce_used(nonce_id, now):
                raise AuthenticationError(INVALID_NONCE)
            user = gateway.find_user_by_wallet(wallet_address)
            if user is None:
                user = gateway.create_user(wallet_address, now)
                logger.info("New user created for wallet %s", mask_wallet(wallet_address))
            else:
                user = gateway.update_user_last_login(user.id, now)
            return user

        user = self.gateway.transaction(consume_nonce_and_login)

        auth_user = AuthUser.from_model(user)
        token = create_access_token(auth_user.id, auth_user.wallet_address)
        logger.info("User %s authenticated via wallet %s", auth_user.id, mask_wallet(wallet_address))
        return AuthResult(
            access_token=token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
            user=auth_user,
        )

    def validate_token(self, token: Optional[str]) -> AuthUser:
        """Resolve a bearer token to the user it was issued for."""
        if not token:
            raise AuthenticationError("No token provided")
        payload = verify_token(token)

        user = self.gateway.find_user_by_wallet(payload["wallet_address"])
        if user is None:
            raise AuthenticationError("User not found")
        if user.id != payload["user_id"]:
            raise AuthenticationError("Invalid token")
        return AuthUser.from_model(user)

    def logout(self, user: AuthUser) -> None:
        # Tokens are stateless; the client drops its copy.
        logger.info("User %s logged out", user.id)

    def _cleanup_expired_nonces(self, wallet_address: str, now: datetime) -> None:
        try:
            removed = self.gateway.cleanup_expired_nonces(wallet_address, now)
            if removed:
                logger.debug("Removed %d expired nonces for %s", removed, mask_wallet(wallet_address))
        except Exception as exc:
            logger.warning("Failed to cleanup expired nonces for %s: %s", mask_wallet(wallet_address), exc)
