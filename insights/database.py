"""
Database Connection
===================
Async SQLAlchemy engine and session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from insights.config import settings

logger = structlog.get_logger()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get (and lazily create) the application engine."""
    global _engine, _session_factory

    if _engine is None:
        kwargs = {"echo": settings.app_debug, "pool_pre_ping": True}
        if settings.database_url.startswith("postgresql"):
            kwargs["pool_size"] = settings.database_pool_size
            kwargs["max_overflow"] = settings.database_max_overflow

        _engine = create_async_engine(settings.database_url, **kwargs)
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the application engine."""
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def init_db() -> None:
    """Verify database connectivity on startup."""
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.exec_driver_sql("SELECT 1")


async def close_db() -> None:
    """Dispose the engine and its connection pool."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context manager for background jobs."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            logger.error("Session rolled back after error")
            raise
