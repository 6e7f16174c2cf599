import os
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set up test environment variables BEFORE importing application modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sessionkeeper import models  # noqa: E402,F401
from sessionkeeper.api import deps  # noqa: E402
from sessionkeeper.api.auth import router as auth_router  # noqa: E402
from sessionkeeper.api.errors import register_exception_handlers  # noqa: E402
from sessionkeeper.config import Settings, get_settings  # noqa: E402
from sessionkeeper.database import Base  # noqa: E402

TEST_PASSWORD = "TestPass123!"


def build_app(session_factory, settings: Settings | None = None) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(auth_router, prefix="/api")

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    if settings is not None:
        app.dependency_overrides[get_settings] = lambda: settings
    return app


def cookie_value(response, cookie_name: str) -> str | None:
    """Pull a cookie's value out of the Set-Cookie headers of a response."""
    for header in response.headers.get_list("set-cookie"):
        token_part = header.split(";", 1)[0]
        name, value = token_part.split("=", 1)
        if name == cookie_name:
            return value.strip('"')
    return None


def set_cookie_header(response, cookie_name: str) -> str:
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{cookie_name}="):
            return header
    raise AssertionError(f"{cookie_name} cookie not set")


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def app(session_factory):
    return build_app(session_factory)


@pytest.fixture
def client(app):
    # https so the Secure cookies round-trip through the client's cookie jar
    return TestClient(app, base_url="https://testserver")


@pytest.fixture
def signed_up(client):
    """Register a@x.com and return its credentials."""
    response = client.post("/api/user/sign-up", json={"email": "a@x.com", "password": TEST_PASSWORD})
    assert response.status_code == 201
    return {"email": "a@x.com", "password": TEST_PASSWORD}
