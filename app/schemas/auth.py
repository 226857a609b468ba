from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.my_base_model import CustomBaseModel


class InitAuthRequest(BaseModel):
    """Request model for nonce generation - input validation"""

    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str = Field(..., alias="walletAddress", description="Solana wallet address (base58)")


class NonceResponse(CustomBaseModel):
    """Nonce and the exact message the wallet must sign"""

    nonce: str = ""
    message: str = ""
    expires_at: datetime


class VerifyRequest(BaseModel):
    """Request model for wallet verification - input validation"""

    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str = Field(..., alias="walletAddress", description="Solana wallet address (base58)")
    signature: str = Field(..., description="Ed25519 signature of the message, base58 or base64")
    message: str = Field(..., description="The message returned by /auth/init, unchanged")


class UserPublic(CustomBaseModel):
    id: str = ""
    wallet_address: str = ""
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user) -> "UserPublic":
        return cls(
            id=user.id,
            wallet_address=user.wallet_address,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class AuthResponse(CustomBaseModel):
    """Response model for authentication - output"""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = 0
    user: UserPublic


class ProfileResponse(CustomBaseModel):
    user: UserPublic


class TokenUser(CustomBaseModel):
    id: str = ""
    wallet_address: str = ""


class TokenValidation(CustomBaseModel):
    valid: bool = True
    user: TokenUser
