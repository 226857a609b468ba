"""
JWT Token Utilities

This module handles JSON Web Token (JWT) creation and verification for wallet authentication.
After a user successfully verifies their wallet signature, this module creates a JWT token
that is presented as a bearer credential on subsequent API requests.

Flow:
1. User verifies wallet signature -> create_access_token() generates JWT
2. User makes API request with JWT in Authorization header -> verify_token() validates it
3. Protected endpoints use get_current_session() from dependencies.py to resolve the user

The JWT contains:
- user_id: The id of the authenticated user
- wallet_address: The authenticated Solana wallet address
- iat: Issued at timestamp
- exp: Absolute expiration timestamp (ACCESS_TOKEN_EXPIRE_SECONDS, no refresh token)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.core.config import settings
from app.core.errors import AuthenticationError


if not settings.ENCODE_KEY:
    raise RuntimeError("ENCODE_KEY is not configured")


def create_access_token(
    user_id: str,
    wallet_address: str,
    extra_claims: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Create a JWT access token for an authenticated user.

    Args:
        user_id: id of the user row the token is bound to
        wallet_address: The wallet address that was verified
        extra_claims: Optional additional claims to include in the JWT payload

    Returns:
        A JWT token string that can be used in Authorization: Bearer <token> header

    Raises:
        ValueError: If user_id or wallet_address is empty
    """
    if not user_id or not wallet_address:
        raise ValueError("user_id and wallet_address are required")

    now = now or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "user_id": user_id,
        "wallet_address": wallet_address,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)).timestamp()),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(payload, settings.ENCODE_KEY, algorithm=settings.ENCODE_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Checks token signature, expiration, and required payload fields.

    Raises:
        AuthenticationError: If token is missing, expired, invalid, or missing claims
    """
    if not token:
        raise AuthenticationError("Missing token")

    try:
        payload = jwt.decode(token, settings.ENCODE_KEY, algorithms=[settings.ENCODE_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    if "wallet_address" not in payload or "user_id" not in payload:
        raise AuthenticationError("Invalid token payload")

    return payload
