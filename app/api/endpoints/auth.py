from typing import List

from fastapi import APIRouter, Depends, status

import app.schemas.auth as schemas
from app.core.dependencies import SessionContext, get_auth_service, get_current_session
from app.schemas.my_base_model import DataResponse, Message
from app.services.wallet_auth import WalletAuthService

router = APIRouter()
group_tags: List[str] = ["Auth"]


@router.post(
    "/init",
    tags=group_tags,
    response_model=DataResponse[schemas.NonceResponse],
    status_code=status.HTTP_200_OK,
)
def init_auth(
    body: schemas.InitAuthRequest,
    auth_service: WalletAuthService = Depends(get_auth_service),
) -> DataResponse[schemas.NonceResponse]:
    """Issue a one-time nonce for a wallet.

    - walletAddress: base58 Solana address

    OUTPUT:
    - nonce: hex nonce, single use
    - message: the exact text the wallet has to sign
    - expiresAt: nonce expiry (UTC)
    """
    challenge = auth_service.initialize_auth(body.wallet_address)
    return DataResponse[schemas.NonceResponse](
        data=schemas.NonceResponse(
            nonce=challenge.nonce,
            message=challenge.message,
            expires_at=challenge.expires_at,
        )
    )


@router.post(
    "/verify",
    tags=group_tags,
    response_model=DataResponse[schemas.AuthResponse],
)
def verify_auth(
    body: schemas.VerifyRequest,
    auth_service: WalletAuthService = Depends(get_auth_service),
) -> DataResponse[schemas.AuthResponse]:
    """Verify the signed message and return an access token.

    - walletAddress: the wallet that requested the nonce
    - signature: signature of `message`, base58 or base64
    - message: the message returned by /init
    """
    result = auth_service.verify_and_authenticate(body.wallet_address, body.signature, body.message)
    return DataResponse[schemas.AuthResponse](
        data=schemas.AuthResponse(
            access_token=result.access_token,
            expires_in=result.expires_in,
            user=schemas.UserPublic.from_user(result.user),
        )
    )


@router.get(
    "/profile",
    tags=group_tags,
    response_model=DataResponse[schemas.ProfileResponse],
)
def get_profile(session: SessionContext = Depends(get_current_session)) -> DataResponse[schemas.ProfileResponse]:
    return DataResponse[schemas.ProfileResponse](
        data=schemas.ProfileResponse(user=schemas.UserPublic.from_user(session.user))
    )


@router.post("/logout", tags=group_tags, response_model=Message)
def logout(
    session: SessionContext = Depends(get_current_session),
    auth_service: WalletAuthService = Depends(get_auth_service),
) -> Message:
    """Client-side logout: the token stays valid until it expires."""
    auth_service.logout(session.user)
    return Message(message="Logged out successfully")


@router.get(
    "/validate",
    tags=group_tags,
    response_model=DataResponse[schemas.TokenValidation],
)
def validate_token(session: SessionContext = Depends(get_current_session)) -> DataResponse[schemas.TokenValidation]:
    """Check a bearer token; a bad or expired one is answered with 401."""
    return DataResponse[schemas.TokenValidation](
        data=schemas.TokenValidation(
            user=schemas.TokenUser(id=session.user_id, wallet_address=session.wallet_address),
        )
    )
