"""Database connection and session management."""
from collections.abc import Generator
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from sessionkeeper.config import get_settings

settings = get_settings()

url = make_url(settings.database_url)
is_sqlite = url.get_backend_name() == "sqlite"

# SQLite requires check_same_thread=False for FastAPI
connect_args = {"check_same_thread": False} if is_sqlite else {}

if is_sqlite and url.database and url.database != ":memory:":
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
