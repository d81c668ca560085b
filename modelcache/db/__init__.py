"""
Model Cache Database Configuration

Engine and session factory for the relational entity store.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..core.config import get_settings
from ..models import Base

logger = structlog.get_logger()


def create_database_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create the SQLAlchemy engine.

    Args:
        database_url: Overrides ``DATABASE_URL`` from settings

    Returns:
        Engine with pool settings taken from settings. In-memory SQLite
        shares one connection across threads.
    """
    settings = get_settings()
    url = database_url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {"pool_pre_ping": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW

    engine = create_engine(url, **kwargs)
    logger.info("Database engine created", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory used by entity stores."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@retry(
    stop=stop_after_attempt(get_settings().DATABASE_CONNECT_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=lambda retry_state: logger.warning(
        "Database connection retry",
        attempt=retry_state.attempt_number,
        wait_time=retry_state.next_action.sleep,
    ),
    reraise=True,
)
def check_database_connection(engine: Engine) -> None:
    """Run ``SELECT 1``, retrying with exponential backoff."""
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    logger.debug("Database connection check passed")


def init_database(engine: Engine) -> None:
    """Check connectivity and create tables for every model on ``Base``."""
    check_database_connection(engine)
    Base.metadata.create_all(engine)
    logger.info("Database initialized", tables=sorted(Base.metadata.tables))
