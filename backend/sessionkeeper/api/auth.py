"""Authentication API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from sessionkeeper.api.deps import get_device_info, get_session_manager
from sessionkeeper.config import Settings, get_settings
from sessionkeeper.schemas.auth import (
    CsrfTokenResponse,
    MessageResponse,
    ProfileResponse,
    SessionStatusResponse,
    SignInRequest,
    SignUpRequest,
)
from sessionkeeper.services.device import DeviceInfo
from sessionkeeper.services.errors import AuthError, MissingTokenError
from sessionkeeper.services.session_manager import IssuedTokens, SessionManager

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)


def _http_error(exc: AuthError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def set_access_cookie(response: Response, settings: Settings, access_token: str) -> None:
    """Issue secure HttpOnly access-token cookie."""
    response.set_cookie(
        key=settings.access_cookie_name,
        value=access_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        path=settings.cookie_path,
        max_age=settings.access_token_ttl_seconds,
    )


def set_refresh_cookie(response: Response, settings: Settings, refresh_token: str, max_age: int) -> None:
    """Issue secure HttpOnly refresh-token cookie."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        path=settings.cookie_path,
        max_age=max_age,
    )


def clear_token_cookies(response: Response, settings: Settings) -> None:
    """Blank both token cookies and expire them immediately."""
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.set_cookie(
            key=name,
            value="",
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.cookie_samesite,
            path=settings.cookie_path,
            max_age=0,
        )


def _issue_cookies(response: Response, settings: Settings, tokens: IssuedTokens) -> None:
    set_access_cookie(response, settings, tokens.access_token)
    set_refresh_cookie(response, settings, tokens.refresh_token, tokens.refresh_expires_in)


@router.post("/user/sign-up", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def sign_up(
    user_data: SignUpRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """Register a new user."""
    try:
        manager.sign_up(user_data.email, user_data.password)
    except AuthError as exc:
        raise _http_error(exc)
    return MessageResponse(message="Sign up successful")


@router.post("/user/sign-in", response_model=CsrfTokenResponse)
def sign_in(
    user_data: SignInRequest,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    """Sign in; tokens are set as cookies and the CSRF value is returned in the body."""
    try:
        tokens = manager.sign_in(user_data.email, user_data.password, device)
    except AuthError as exc:
        raise _http_error(exc)

    _issue_cookies(response, settings, tokens)
    return CsrfTokenResponse(csrf_token=tokens.csrf_token)


@router.get("/auth/session", response_model=SessionStatusResponse)
def validate_session(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    """Report whether the cookie pair is still backed by a live session.

    Failures name the failed stage so clients can tell "refresh" from "sign in
    again".
    """
    try:
        session_status = manager.validate_session(
            request.cookies.get(settings.access_cookie_name),
            request.cookies.get(settings.refresh_cookie_name),
        )
    except AuthError as exc:
        logger.debug(f"Session check failed: {exc.reason}")
        raise HTTPException(
            status_code=exc.status_code,
            detail={"valid": False, "reason": exc.reason, "message": exc.message},
        )

    return SessionStatusResponse(
        valid=session_status.valid,
        owner_id=session_status.owner_id,
        expires_in=session_status.expires_in,
    )


@router.post("/user/token/refresh", response_model=CsrfTokenResponse)
def refresh_tokens(
    request: Request,
    response: Response,
    device: DeviceInfo = Depends(get_device_info),
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    """Rotate the session and reissue tokens using the refresh-token cookie."""
    try:
        tokens = manager.refresh(request.cookies.get(settings.refresh_cookie_name), device)
    except AuthError as exc:
        raise _http_error(exc)

    _issue_cookies(response, settings, tokens)
    return CsrfTokenResponse(csrf_token=tokens.csrf_token)


@router.post("/user/sign-out", response_model=MessageResponse)
def sign_out(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    """Revoke the owner's sessions; both cookies are cleared whatever happens."""
    try:
        manager.sign_out(request.cookies.get(settings.refresh_cookie_name))
    except MissingTokenError as exc:
        response = JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
        clear_token_cookies(response, settings)
        return response

    response = JSONResponse(content=MessageResponse(message="Successfully signed out").model_dump())
    clear_token_cookies(response, settings)
    return response


@router.get("/user/profile", response_model=ProfileResponse)
def get_profile(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    """Return the signed-in user; requires the CSRF header when enabled."""
    try:
        profile = manager.get_profile(
            request.cookies.get(settings.access_cookie_name),
            request.headers.get(settings.csrf_header_name),
        )
    except AuthError as exc:
        raise _http_error(exc)
    return ProfileResponse(id=profile.id, email=profile.email)
