from sqlalchemy import Column, DateTime, ForeignKey, String

from app.db.base import Base, new_id, utc_now


class AuthNonce(Base):
    """Model for storing wallet authentication nonces.

    A nonce is usable iff used_at is null and expires_at is in the future;
    used_at is written exactly once, by a conditional update.
    """

    __tablename__ = "auth_nonces"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    wallet_address = Column(String(64), nullable=False, index=True)
    nonce = Column(String(128), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
