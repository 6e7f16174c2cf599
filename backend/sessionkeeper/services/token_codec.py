"""Signing and verification of access and refresh tokens."""
from dataclasses import dataclass
from datetime import datetime, timedelta
import hashlib

from jose import JWTError, jwt

from sessionkeeper.services.errors import InvalidTokenError
from sessionkeeper.timeutil import epoch_seconds, utcnow

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified token payload."""

    subject_id: str
    email: str | None
    session_id: str | None
    token_type: str
    issued_at: int
    expires_at: int


def hash_token(token: str) -> str:
    """Hash a token value before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Issues and verifies HMAC-signed JWTs.

    Has no I/O. The secret and algorithm come from settings at construction and
    never change afterwards.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self._secret_key = secret_key
        self._algorithm = algorithm

    def issue(
        self,
        claims: dict,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> str:
        """Sign ``claims`` with ``iat``/``exp`` derived from ``now + ttl``.

        Output is deterministic for identical claims, time and secret.
        """
        issued_at = epoch_seconds(now or utcnow())
        to_encode = dict(claims)
        to_encode.update({
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
        })
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def issue_access_token(
        self,
        subject_id: str,
        email: str,
        session_id: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> str:
        return self.issue(
            {"sub": subject_id, "email": email, "sid": session_id, "type": ACCESS_TOKEN_TYPE},
            ttl,
            now=now,
        )

    def issue_refresh_token(
        self,
        subject_id: str,
        email: str,
        session_id: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> str:
        return self.issue(
            {"sub": subject_id, "email": email, "sid": session_id, "type": REFRESH_TOKEN_TYPE},
            ttl,
            now=now,
        )

    def verify(self, token: str, token_type: str) -> TokenClaims:
        """Decode and verify a token of the expected type.

        Any failure (bad encoding, signature mismatch, expiry, wrong type or a
        missing subject) raises the same InvalidTokenError.
        """
        if not token:
            raise InvalidTokenError()

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require_exp": True},
            )
        except JWTError:
            raise InvalidTokenError() from None

        subject_id = payload.get("sub")
        if payload.get("type") != token_type or not subject_id:
            raise InvalidTokenError()

        return TokenClaims(
            subject_id=str(subject_id),
            email=payload.get("email"),
            session_id=payload.get("sid"),
            token_type=token_type,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
        )
