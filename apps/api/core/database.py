"""
Database connection management.

Postgres with a connection pool in deployment; SQLite (file or in-memory)
for local runs and tests when DATABASE_URL points at it.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import settings
import logging
from typing import Optional
import threading
from contextlib import nullcontext

logger = logging.getLogger(__name__)


def build_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"postgresql://{settings.POSTGRES_USER}:"
        f"{settings.POSTGRES_PASSWORD}@"
        f"{settings.POSTGRES_HOST}:"
        f"{settings.POSTGRES_PORT}/"
        f"{settings.POSTGRES_DB}"
    )


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets a thread-shareable connection."""
    if url.startswith("sqlite"):
        # Profile store calls run in worker threads (asyncio.to_thread)
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": settings.DEBUG}
        if url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url:
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.DEBUG,
    )


DATABASE_URL = build_database_url()
engine = build_engine(DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Rows are converted to plain values after commit
)

Base = declarative_base()


# A single shared SQLite connection cannot interleave transactions from several threads.
_sqlite_guard = threading.RLock()


def session_guard(bind: Optional[Engine]):
    """Lock to hold around a unit of work on ``bind`` (no-op outside SQLite)."""
    if bind is not None and bind.dialect.name == "sqlite":
        return _sqlite_guard
    return nullcontext()


@event.listens_for(engine, "connect")
def on_connect(dbapi_conn, connection_record):
    logger.debug("New database connection established")


def get_db():
    """
    Dependency for FastAPI to get a database session.

    Commits on success, rolls back on any exception, always closes.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        from fastapi import HTTPException
        if not isinstance(e, HTTPException):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
