"""
Database Configuration

SECURITY:
- SQLAlchemy echo disabled in production to prevent credential leakage
- Connection string never logged

Engines are built by ``create_database_engine`` so the application engine
and the test engines carry the same slow-query logging. The application
engine is created on first use.
"""

import logging
import time
from functools import lru_cache
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import settings

logger = logging.getLogger(__name__)

SAVE_FLOW_TABLES = ("save_flow_configs", "save_attempts", "interventions", "subscriptions")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def _attach_slow_query_logging(engine: AsyncEngine, threshold_ms: int) -> None:
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.monotonic())

    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start_time")
        if not starts:
            return
        duration_ms = (time.monotonic() - starts.pop()) * 1000
        if duration_ms >= threshold_ms:
            param_count = len(parameters) if parameters else 0
            truncated = statement[:200] + ("..." if len(statement) > 200 else "")
            logger.warning(
                "Slow query (%.0fms, %d params): %s", duration_ms, param_count, truncated
            )

    event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    event.listen(engine.sync_engine, "after_cursor_execute", after_cursor_execute)


def create_database_engine(
    url: Optional[str] = None,
    slow_query_ms: Optional[int] = None,
    **kwargs,
) -> AsyncEngine:
    """
    Create an async engine with slow-query logging attached.

    Args:
        url: database URL, defaults to ``settings.DATABASE_URL``
        slow_query_ms: warn about statements at or above this duration,
            defaults to ``settings.SLOW_QUERY_THRESHOLD_MS``
        **kwargs: passed through to ``create_async_engine``
    """
    if slow_query_ms is None:
        slow_query_ms = settings.SLOW_QUERY_THRESHOLD_MS
    kwargs.setdefault("echo", settings.sqlalchemy_echo)

    engine = create_async_engine(url or settings.DATABASE_URL, **kwargs)
    _attach_slow_query_logging(engine, slow_query_ms)
    return engine


@lru_cache()
def get_engine() -> AsyncEngine:
    """Process-wide engine for ``settings.DATABASE_URL``."""
    return create_database_engine(pool_pre_ping=True)


def session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine or get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db(engine: Optional[AsyncEngine] = None) -> AsyncIterator[AsyncSession]:
    """Yield a database session.

    Note: Callers (or the save-flow unit of work) are responsible for
    calling commit(). This only provides the session and handles cleanup.
    """
    session = session_factory(engine)()
    try:
        yield session
    finally:
        await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the save-flow tables that do not exist yet."""
    # Register models with the metadata before create_all
    import app.models  # noqa: F401

    async with (bind or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def drop_db(bind: Optional[AsyncEngine] = None) -> None:
    import app.models  # noqa: F401

    async with (bind or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
