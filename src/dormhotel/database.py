"""Database engine, session factory and startup initialization."""

import logging
import sqlite3
import time
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import settings
from .exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, pool_timeout: int = 60) -> Engine:
    """Build an engine for ``database_url`` with pool limits applied."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
    )


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enabled per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_db_engine(settings.database_url, settings.db_pool_timeout)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Provide a session scoped to a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(
    bind: Optional[Engine] = None,
    seed: Optional[Callable[[], None]] = None,
    max_retries: int = settings.db_init_max_retries,
    retry_delay: float = settings.db_init_retry_delay,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[StoreUnavailable]:
    """Create tables and run ``seed``, retrying while the database is unreachable.

    Returns ``None`` on success. After ``max_retries`` failed attempts a
    :class:`StoreUnavailable` describing the last failure is returned so the
    caller can decide whether to halt.
    """
    from . import models  # noqa: F401  registers tables on Base.metadata

    bind = bind or engine
    last_error: Optional[Exception] = None
    for attempt in range(1, max_retries + 1):
        logger.info("database initialization attempt %d/%d", attempt, max_retries)
        try:
            with bind.connect() as connection:
                connection.execute(text("SELECT 1"))
            Base.metadata.create_all(bind=bind)
            if seed is not None:
                seed()
        except (SQLAlchemyError, StoreUnavailable) as exc:
            last_error = exc
            logger.warning(
                "initialization attempt %d/%d failed: %s", attempt, max_retries, exc
            )
            if attempt < max_retries:
                logger.info("retrying in %.1f seconds", retry_delay)
                sleep(retry_delay)
            continue
        logger.info("database initialized")
        return None

    logger.error("maximum database initialization retries reached")
    return StoreUnavailable(f"Database initialization failed: {last_error}")
