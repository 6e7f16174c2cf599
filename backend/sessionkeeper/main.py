"""SessionKeeper - cookie-based session and token API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sessionkeeper.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: create tables
    from sessionkeeper.database import Base, engine

    # Import all models so they're registered with Base
    from sessionkeeper import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    yield
    # Shutdown: cleanup if needed


app = FastAPI(
    title=settings.app_name,
    description="Sign-up, sign-in, session validation, token refresh and sign-out",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from sessionkeeper.api import auth  # noqa: E402
from sessionkeeper.api.errors import register_exception_handlers  # noqa: E402

register_exception_handlers(app)
app.include_router(auth.router, prefix="/api")
