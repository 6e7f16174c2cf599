"""Authentication error taxonomy.

Every error carries the HTTP status the API layer should answer with and a
stable ``reason`` code. Credential failures share one message so responses
never reveal which check failed; session-check failures expose their reason
so clients can choose between refreshing and signing in again.
"""


class AuthError(Exception):
    """Base class for authentication and session errors."""

    status_code: int = 400
    reason: str = "bad-request"
    message: str = "Bad request"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        if message is not None:
            self.message = message
        if reason is not None:
            self.reason = reason
        super().__init__(self.message)


class InvalidTokenError(AuthError):
    """A token failed to decode, verify, or carried the wrong type.

    Raised by the token codec with no further detail.
    """

    status_code = 401
    reason = "invalid-token"
    message = "Invalid or expired token"


class InvalidCredentialsError(AuthError):
    status_code = 401
    reason = "invalid-credentials"
    message = "Invalid credentials"


class UnauthenticatedError(AuthError):
    status_code = 401
    reason = "unauthenticated"
    message = "Unauthorized"


class SessionRevokedError(UnauthenticatedError):
    reason = "session-revoked"
    message = "Invalid or expired session"


class CsrfMismatchError(UnauthenticatedError):
    reason = "csrf-mismatch"
    message = "Invalid CSRF token"


class MissingTokenError(AuthError):
    status_code = 400
    reason = "missing-token"
    message = "Missing refresh token"


class ConflictError(AuthError):
    status_code = 409
    reason = "conflict"
    message = "User already exists"


class NotFoundError(AuthError):
    status_code = 404
    reason = "not-found"
    message = "User not found"
