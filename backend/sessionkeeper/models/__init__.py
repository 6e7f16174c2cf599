"""SQLAlchemy models package."""
from sessionkeeper.models.user import User
from sessionkeeper.models.auth import RefreshToken, UserSession

__all__ = [
    "User",
    "UserSession",
    "RefreshToken",
]
