"""Password hashing."""
from functools import lru_cache
import secrets

import bcrypt

# bcrypt only reads the first 72 bytes; newer releases reject longer input
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


@lru_cache
def dummy_password_hash() -> str:
    """Hash checked for unknown accounts so sign-in does the same bcrypt work."""
    return get_password_hash(secrets.token_hex(16))
