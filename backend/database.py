"""SQLAlchemy engine, session, and declarative base."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings


def _connect_args(url: str) -> dict:
    """Driver arguments that bound how long a single statement may block."""
    if "sqlite" in url:
        # Seconds to wait on a locked database before raising OperationalError
        return {"check_same_thread": False, "timeout": settings.STORE_TIMEOUT_SECONDS}
    if url.startswith("postgresql"):
        timeout_ms = int(settings.STORE_TIMEOUT_SECONDS * 1000)
        return {"options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False,
    pool_pre_ping="sqlite" not in settings.DATABASE_URL,
)

# Enable WAL mode and foreign keys for SQLite
if "sqlite" in settings.DATABASE_URL:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """FastAPI dependency that yields a SQLAlchemy session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
