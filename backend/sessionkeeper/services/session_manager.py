"""Session and token lifecycle: sign-up, sign-in, validation, refresh, sign-out."""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import IntegrityError

from sessionkeeper.config import Settings
from sessionkeeper.models.user import User
from sessionkeeper.services.csrf import generate_csrf_token, validate_csrf_token
from sessionkeeper.services.device import DeviceInfo
from sessionkeeper.services.errors import (
    ConflictError,
    CsrfMismatchError,
    InvalidCredentialsError,
    InvalidTokenError,
    MissingTokenError,
    NotFoundError,
    SessionRevokedError,
    UnauthenticatedError,
)
from sessionkeeper.services.passwords import dummy_password_hash, get_password_hash, verify_password
from sessionkeeper.services.session_store import SessionStore
from sessionkeeper.services.token_codec import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenClaims,
    TokenCodec,
)
from sessionkeeper.timeutil import epoch_seconds, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedTokens:
    """Tokens handed to the client after sign-in or refresh."""

    access_token: str
    refresh_token: str
    csrf_token: str
    session_id: str
    refresh_expires_in: int  # seconds left on the refresh token


@dataclass(frozen=True)
class SessionStatus:
    valid: bool
    owner_id: str
    expires_in: int


@dataclass(frozen=True)
class Profile:
    id: str
    email: str


class SessionManager:
    """Orchestrates the credential store, session store and token codec.

    Each public method runs in the caller's database session and commits on
    success. ``validate_session`` never writes.
    """

    def __init__(
        self,
        store: SessionStore,
        codec: TokenCodec,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.codec = codec
        self.settings = settings
        self.clock = clock

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.refresh_token_expire_minutes)

    def sign_up(self, email: str, password: str) -> User:
        """Register a new user."""
        if self.store.find_user_by_email(email):
            raise ConflictError()

        try:
            user = self.store.create_user(email, get_password_hash(password))
            self.store.commit()
        except IntegrityError:
            # Lost a race against a concurrent sign-up for the same email
            self.store.rollback()
            raise ConflictError() from None

        logger.info(f"Registered user {user.id}")
        return user

    def sign_in(self, email: str, password: str, device: DeviceInfo) -> IssuedTokens:
        """Authenticate credentials and open a session for this device.

        Unknown email and wrong password raise the same error.
        """
        user = self.store.find_user_by_email(email)
        # Unknown accounts still pay for one bcrypt check
        password_hash = user.password_hash if user else dummy_password_hash()
        if not verify_password(password, password_hash) or not user:
            logger.info("Sign-in rejected: invalid credentials")
            raise InvalidCredentialsError()

        now = self.clock()
        csrf_token = generate_csrf_token()
        session = self.store.upsert_session(
            user.id,
            device,
            csrf_token,
            expires_at=now + self.access_ttl,
            now=now,
        )

        access_token = self.codec.issue_access_token(user.id, user.email, session.id, self.access_ttl, now=now)
        refresh_token = self.codec.issue_refresh_token(user.id, user.email, session.id, self.refresh_ttl, now=now)
        self.store.upsert_refresh_token(
            user.id,
            device,
            refresh_token,
            expires_at=now + self.refresh_ttl,
            now=now,
        )
        self.store.commit()

        logger.info(f"User {user.id} signed in, session {session.id}")
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            csrf_token=csrf_token,
            session_id=session.id,
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
        )

    def validate_session(self, access_token: str | None, refresh_token: str | None) -> SessionStatus:
        """Check both tokens against the store without mutating anything.

        Raises UnauthenticatedError whose ``reason`` names the failed stage.
        """
        if not refresh_token:
            raise UnauthenticatedError("No refresh token found", reason="no-refresh-token")
        try:
            self.codec.verify(refresh_token, REFRESH_TOKEN_TYPE)
        except InvalidTokenError:
            raise UnauthenticatedError("Invalid or expired refresh token", reason="invalid-refresh") from None

        record = self.store.find_refresh_token(refresh_token)
        if not record:
            raise UnauthenticatedError("Refresh token not found", reason="not-in-store")
        if record.revoked:
            raise UnauthenticatedError("Refresh token revoked", reason="refresh-revoked")

        now = self.clock()
        if self._is_expired(record.expires_at, now):
            raise UnauthenticatedError("Refresh token expired", reason="db-expired")

        if not access_token:
            raise UnauthenticatedError("No access token found", reason="no-access-token")
        try:
            claims = self.codec.verify(access_token, ACCESS_TOKEN_TYPE)
        except InvalidTokenError:
            raise UnauthenticatedError("Access token invalid or expired", reason="access-invalid") from None

        self._require_live_session(claims, now)

        expires_in = max(claims.expires_at - epoch_seconds(now), 0)
        logger.debug(f"Session valid for user {claims.subject_id}, {expires_in}s remaining")
        return SessionStatus(valid=True, owner_id=claims.subject_id, expires_in=expires_in)

    def refresh(self, refresh_token: str | None, device: DeviceInfo | None = None) -> IssuedTokens:
        """Rotate the caller's session and reissue the token pair.

        The current session is revoked and replaced under a new id, so access
        tokens bound to the old id stop validating immediately.
        """
        if not refresh_token:
            raise MissingTokenError()

        try:
            claims = self.codec.verify(refresh_token, REFRESH_TOKEN_TYPE)
        except InvalidTokenError:
            logger.warning("Refresh rejected: invalid or expired refresh token")
            raise UnauthenticatedError("Invalid or expired refresh token", reason="invalid-refresh") from None

        owner_id = claims.subject_id
        record = self.store.find_refresh_token(refresh_token, user_id=owner_id)
        if not record:
            if self.store.find_rotated_refresh_token(refresh_token):
                logger.warning(f"Refresh token reuse detected for user {owner_id}")
            else:
                logger.warning(f"Refresh rejected: token for user {owner_id} not in store")
            raise UnauthenticatedError("Invalid refresh token", reason="not-in-store")
        if record.revoked:
            logger.warning(f"Refresh rejected: revoked token for user {owner_id}")
            raise UnauthenticatedError("Invalid refresh token", reason="refresh-revoked")

        now = self.clock()
        record_expires_at = parse_timestamp(record.expires_at)
        if record_expires_at is None or record_expires_at <= now:
            logger.warning(f"Refresh rejected: stored token for user {owner_id} expired")
            raise UnauthenticatedError("Refresh token expired", reason="db-expired")

        user = self.store.get_user(owner_id)
        if not user:
            raise NotFoundError()

        # The session to rotate is the one recorded on the refresh token row,
        # so a client whose IP changed keeps the session it signed in with.
        recorded_device = DeviceInfo.from_headers(record.user_agent, record.ip_address)
        if device is not None and device.fingerprint != record.device_fingerprint:
            logger.info(f"Refresh for user {owner_id} from a different device than sign-in")
        self.store.revoke_session(user.id, record.device_fingerprint, now)

        csrf_token = generate_csrf_token()
        session = self.store.upsert_session(
            user.id,
            recorded_device,
            csrf_token,
            expires_at=now + self.access_ttl,
            now=now,
        )
        access_token = self.codec.issue_access_token(user.id, user.email, session.id, self.access_ttl, now=now)

        # The rotated refresh token keeps the original absolute expiry.
        new_refresh_token = self.codec.issue_refresh_token(
            user.id,
            user.email,
            session.id,
            record_expires_at - now,
            now=now,
        )
        if not self.store.rotate_refresh_token(record, refresh_token, new_refresh_token, now):
            self.store.rollback()
            logger.warning(f"Refresh rejected: concurrent rotation for user {owner_id}")
            raise UnauthenticatedError("Invalid refresh token", reason="not-in-store")
        self.store.commit()

        logger.info(f"Refreshed session for user {user.id}, new session {session.id}")
        return IssuedTokens(
            access_token=access_token,
            refresh_token=new_refresh_token,
            csrf_token=csrf_token,
            session_id=session.id,
            refresh_expires_in=int((record_expires_at - now).total_seconds()),
        )

    def sign_out(self, refresh_token: str | None) -> str:
        """Revoke every refresh token and session of the token's owner.

        A token that fails verification is treated as missing.
        """
        if not refresh_token:
            raise MissingTokenError()
        try:
            claims = self.codec.verify(refresh_token, REFRESH_TOKEN_TYPE)
        except InvalidTokenError:
            raise MissingTokenError() from None

        now = self.clock()
        tokens = self.store.revoke_user_refresh_tokens(claims.subject_id, now)
        sessions = self.store.revoke_user_sessions(claims.subject_id, now)
        self.store.commit()

        logger.info(
            f"User {claims.subject_id} signed out, revoked {tokens} refresh tokens and {sessions} sessions"
        )
        return claims.subject_id

    def get_profile(self, access_token: str | None, csrf_token: str | None) -> Profile:
        """Resolve the access token to a user, enforcing CSRF when configured."""
        if not access_token:
            raise UnauthenticatedError()
        try:
            claims = self.codec.verify(access_token, ACCESS_TOKEN_TYPE)
        except InvalidTokenError:
            raise UnauthenticatedError() from None

        session = self._require_live_session(claims, self.clock())
        if self.settings.csrf_protect_profile and not validate_csrf_token(session.csrf_token, csrf_token):
            logger.warning(f"CSRF check failed for session {session.id}")
            raise CsrfMismatchError()

        user = self.store.get_user(claims.subject_id)
        if not user:
            raise UnauthenticatedError()
        return Profile(id=user.id, email=user.email)

    def _require_live_session(self, claims: TokenClaims, now: datetime):
        if not claims.session_id:
            raise UnauthenticatedError("Session ID missing in token", reason="session-id-missing")

        session = self.store.get_session(claims.session_id)
        if not session or session.revoked or session.user_id != claims.subject_id:
            raise SessionRevokedError()
        if self._is_expired(session.expires_at, now):
            raise SessionRevokedError("Session expired", reason="session-expired")
        return session

    @staticmethod
    def _is_expired(expires_at: str | None, now: datetime) -> bool:
        parsed = parse_timestamp(expires_at)
        return parsed is None or parsed <= now
