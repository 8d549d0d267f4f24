"""PostgreSQL engine and session factory for the decision store.

init_postgres() runs once at startup: it builds the pooled async engine
from settings and creates the decisions table, retrying while the
database is still coming up. Request code only ever sees the session
factory returned by get_session_maker().
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None

STARTUP_RETRIES = 3

# Transient failures while the server starts or drops connections
TRANSIENT_ERRORS = (
    OperationalError,
    InterfaceError,
    DBAPIError,
    PoolTimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class Base(DeclarativeBase):
    pass


def _is_transient(exc: Exception) -> bool:
    if not isinstance(exc, TRANSIENT_ERRORS):
        return False
    # A DBAPIError is only transient when the connection itself broke
    if isinstance(exc, DBAPIError) and not isinstance(exc, OperationalError):
        return exc.connection_invalidated
    return True


def _backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 8.0) -> float:
    return min(base_delay * 2**attempt, max_delay) + random.uniform(0, 1)


async def retry_transient(
    operation: Callable[[], Awaitable[None]],
    name: str,
    max_retries: int = STARTUP_RETRIES,
) -> None:
    """Await operation, retrying transient database errors with backoff.

    Raises:
        The last error once retries are exhausted, or any non-transient
        error immediately
    """
    for attempt in range(max_retries + 1):
        try:
            await operation()
            return
        except Exception as e:
            if not _is_transient(e) or attempt == max_retries:
                logger.error(f"{name} failed after {attempt + 1} attempt(s): {type(e).__name__}: {e}")
                raise
            delay = _backoff(attempt)
            logger.warning(
                f"{name} attempt {attempt + 1}/{max_retries + 1} failed "
                f"({type(e).__name__}), retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)


async def init_postgres() -> None:
    global engine, async_session_maker
    settings = get_settings()

    logger.info(
        f"Opening PostgreSQL pool (size={settings.postgres_pool_min_size}, "
        f"max={settings.postgres_pool_max_size}, recycle={settings.postgres_pool_recycle}s)"
    )
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=settings.postgres_pool_min_size,
        max_overflow=settings.postgres_pool_max_size - settings.postgres_pool_min_size,
        pool_recycle=settings.postgres_pool_recycle,
    )
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    import models.postgres  # noqa: F401  registers the decisions table on Base

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    await retry_transient(create_tables, "Decision table creation")
    logger.info("PostgreSQL pool ready")


async def close_postgres() -> None:
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
        logger.info("PostgreSQL pool closed")
    engine = None
    async_session_maker = None


def get_session_maker() -> async_sessionmaker:
    """Session factory for the decision store.

    Raises:
        RuntimeError: init_postgres() has not run
    """
    if async_session_maker is None:
        raise RuntimeError("PostgreSQL is not initialized")
    return async_session_maker
