"""User model."""
import uuid

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from sessionkeeper.database import Base
from sessionkeeper.timeutil import utcnow_iso


class User(Base):
    """User account."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(String(26), default=utcnow_iso)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
