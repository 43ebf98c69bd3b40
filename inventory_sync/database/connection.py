"""
Database Connection Management

Async database engine and session factory with SQLAlchemy 2.0.
Implements initialization, health checks, and graceful shutdown.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy import text

from inventory_sync.config import get_settings
from inventory_sync.database.models import Base

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    In-memory SQLite shares one connection across the engine (StaticPool),
    every other backend uses NullPool since asyncpg pools internally.
    """
    engine_config = {"echo": echo, "pool_pre_ping": True}

    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        engine_config.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })
    else:
        engine_config.update({"poolclass": NullPool})

    return create_async_engine(url, **engine_config)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by every service object of the pipeline"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_database(create_schema: bool = True) -> AsyncEngine:
    """
    Initialize the database engine.

    Args:
        create_schema: Create missing tables on startup

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    _engine = create_engine_for_url(settings.database.async_url, echo=settings.database.echo)
    _async_session_factory = create_session_factory(_engine)

    # Verify connection
    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        if create_schema:
            await create_tables(_engine)
        logger.info(
            "Database connection established",
            dialect=_engine.dialect.name,
            host=settings.database.host,
            database=settings.database.db,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    return _engine


async def close_database() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the global session factory.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _async_session_factory


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional scope around a series of operations.

    Commits on success, rolls back and re-raises on error.

    Example:
        async with session_scope(factory) as db:
            await db.execute(query)
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.debug("Database session error, rolling back", error=str(e), error_type=type(e).__name__)
        await session.rollback()
        raise
    finally:
        await session.close()


async def check_database_health(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        factory = session_factory or get_session_factory()
        start = time.perf_counter()
        async with session_scope(factory) as db:
            await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }
