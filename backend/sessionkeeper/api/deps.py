"""Shared FastAPI dependencies."""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from sessionkeeper.config import Settings, get_settings
from sessionkeeper.database import get_db
from sessionkeeper.services.device import DeviceInfo
from sessionkeeper.services.session_manager import SessionManager
from sessionkeeper.services.session_store import SessionStore
from sessionkeeper.services.token_codec import TokenCodec

__all__ = [
    "get_db",
    "get_device_info",
    "get_request_ip",
    "get_session_manager",
    "get_token_codec",
]


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


def get_device_info(request: Request) -> DeviceInfo:
    """Identify the calling device from its user-agent and IP."""
    return DeviceInfo.from_headers(request.headers.get("user-agent"), get_request_ip(request))


def get_token_codec(settings: Settings = Depends(get_settings)) -> TokenCodec:
    return TokenCodec(settings.secret_key, settings.algorithm)


def get_session_manager(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_settings),
) -> SessionManager:
    """Build a lifecycle manager bound to this request's database session."""
    return SessionManager(SessionStore(db), codec, settings)
