"""CSRF secret generation and validation."""
import hmac
import secrets

CSRF_TOKEN_BYTES = 32


def generate_csrf_token() -> str:
    """Return a new random CSRF secret (64 hex characters)."""
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def validate_csrf_token(expected: str | None, presented: str | None) -> bool:
    """Check a presented CSRF header against the session's stored secret.

    Absent values and length mismatches are rejected before the constant-time
    comparison.
    """
    if not expected or not presented:
        return False
    if len(expected) != len(presented):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))
