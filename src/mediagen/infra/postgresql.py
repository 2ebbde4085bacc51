"""Database engine and session management."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import (
    POSTGRESQL_CONNECTED_WORKERS,
    POSTGRESQL_POOL_ACTIVE,
    POSTGRESQL_POOL_IDLE,
    POSTGRESQL_POOL_OVERFLOW,
)
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db() -> None:
    global _engine, _session_factory

    settings = get_settings()

    _engine = create_async_engine(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_recycle=3600,
        pool_pre_ping=True,
        poolclass=AsyncAdaptedQueuePool,
    )
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        POSTGRESQL_CONNECTED_WORKERS.set(0)
        logger.error(
            "PostgreSQL connection failed",
            extra={
                "event": LogEvent.DB_ERROR,
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        raise

    POSTGRESQL_CONNECTED_WORKERS.set(1)
    logger.info(
        "PostgreSQL connected",
        extra={
            "event": LogEvent.DB_CONNECTED,
            "pool_size": settings.database.pool_size,
            "max_overflow": settings.database.max_overflow,
        },
    )


async def close_db() -> None:
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        POSTGRESQL_CONNECTED_WORKERS.set(0)


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized")
    return _engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work outside a request (webhook follow-ups,
    queue workers, the stale reaper)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


def update_pool_metrics() -> None:
    """Sample the SQLAlchemy pool into gauges."""
    if _engine is None:
        return
    pool = _engine.pool
    POSTGRESQL_POOL_IDLE.set(pool.checkedin())  # type: ignore[attr-defined]
    POSTGRESQL_POOL_ACTIVE.set(pool.checkedout())  # type: ignore[attr-defined]
    POSTGRESQL_POOL_OVERFLOW.set(pool.overflow())  # type: ignore[attr-defined]
