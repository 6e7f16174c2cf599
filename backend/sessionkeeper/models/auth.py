"""Authentication/session models."""
import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from sessionkeeper.database import Base
from sessionkeeper.timeutil import utcnow_iso


class UserSession(Base):
    """Server-side session, one row per (user, device fingerprint).

    Sign-in and refresh overwrite the row in place and assign a new id, so an
    access token bound to an earlier id stops resolving.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "device_fingerprint", name="uq_sessions_user_device"),
        Index("ix_sessions_user_revoked", "user_id", "revoked"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_fingerprint = Column(String(64), nullable=False)
    csrf_token = Column(String(64), nullable=False)
    created_at = Column(String(26), default=utcnow_iso)
    expires_at = Column(String(26), nullable=False)
    revoked = Column(Integer, default=0, nullable=False)  # SQLite boolean
    revoked_at = Column(String(26))
    user_agent = Column(String(255))
    ip_address = Column(String(45))

    user = relationship("User", back_populates="sessions")


class RefreshToken(Base):
    """Persisted refresh token, one row per (user, device fingerprint)."""

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "device_fingerprint", name="uq_refresh_tokens_user_device"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_fingerprint = Column(String(64), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    created_at = Column(String(26), default=utcnow_iso)
    expires_at = Column(String(26), nullable=False)
    revoked = Column(Integer, default=0, nullable=False)  # SQLite boolean
    revoked_at = Column(String(26))
    rotated_from_hash = Column(String(64), index=True)
    rotated_at = Column(String(26))
    user_agent = Column(String(255))
    ip_address = Column(String(45))

    user = relationship("User", back_populates="refresh_tokens")
