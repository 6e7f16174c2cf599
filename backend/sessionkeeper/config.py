"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math

from pydantic import field_validator
from pydantic_settings import BaseSettings
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

# Backends with an INSERT .. ON CONFLICT upsert
SUPPORTED_DATABASE_BACKENDS = ("sqlite", "postgresql")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "SessionKeeper"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "sqlite:///./data/sessionkeeper.db"

    # Tokens
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60  # also the server-side session TTL
    refresh_token_expire_minutes: int = 7 * 24 * 60

    # Cookies
    access_cookie_name: str = "token"
    refresh_cookie_name: str = "refreshToken"
    cookie_path: str = "/"
    cookie_samesite: str = "strict"
    cookie_secure: bool = True

    # CSRF
    csrf_header_name: str = "x-csrf-token"
    csrf_protect_profile: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Fail closed if SECRET_KEY is weak or placeholder quality."""
        if not value:
            raise ValueError("SECRET_KEY must be set.")

        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        weak_values = {"changeme", "changeme-in-production", "secret", "password", "test"}
        lowered = value.lower()
        if lowered in weak_values or "changeme" in lowered:
            raise ValueError("SECRET_KEY must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        estimated_entropy_bits = entropy_per_char * len(value)
        if estimated_entropy_bits < 100:
            raise ValueError("SECRET_KEY entropy is too low; use a cryptographically random value.")

        return value

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        try:
            backend = make_url(value).get_backend_name()
        except ArgumentError:
            raise ValueError("DATABASE_URL is not a valid database URL.") from None
        if backend not in SUPPORTED_DATABASE_BACKENDS:
            raise ValueError(f"Unsupported database backend {backend!r}; use sqlite or postgresql.")
        return value

    @field_validator("access_token_expire_minutes", "refresh_token_expire_minutes")
    @classmethod
    def validate_positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Token lifetimes must be positive.")
        return value

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_minutes * 60


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
