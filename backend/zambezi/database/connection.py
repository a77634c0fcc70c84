"""
Database connection management with SQLAlchemy async engine.

This module provides async database connection management using SQLAlchemy
2.0 with connection pooling, health checks, and the FastAPI session
dependency. Request handlers receive one session per request; gateway
adapters own the commit boundaries inside it.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from zambezi.core.config import get_settings
from zambezi.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def async_database_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine() -> AsyncEngine:
    """
    Create async SQLAlchemy engine with connection pooling.

    Tests run with NullPool so connections never outlive an event loop.

    Returns:
        Configured async SQLAlchemy engine
    """
    settings = get_settings()
    database_url = async_database_url(settings.database_url)

    engine_kwargs: dict[str, Any] = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "connect_args": {
            "server_settings": {"application_name": settings.app_name},
            "command_timeout": 60,
            "timeout": 10,
        },
    }
    if settings.environment == "test":
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )

    engine = create_async_engine(database_url, **engine_kwargs)

    logger.info(
        "Database engine created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        environment=settings.environment,
    )

    return engine


def get_engine() -> AsyncEngine:
    """
    Get or create the global async database engine.

    Raises:
        RuntimeError: If engine initialization fails
    """
    global _engine

    if _engine is None:
        try:
            _engine = create_engine()
        except Exception as e:
            logger.error(
                "Failed to create database engine",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RuntimeError(f"Database engine initialization failed: {e}") from e

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the global session factory.

    Sessions do not expire attributes on commit so that gateway results
    can be built from objects after their transaction completes.
    """
    global _session_factory

    if _session_factory is None:
        engine = get_engine()
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database session factory created")

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create async database session with automatic cleanup.

    Yields:
        Async database session
    """
    session = get_session_factory()()

    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(
            "Database session rolled back",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database session injection.

    Example:
        @router.get("/status/{order_id}")
        async def status(order_id: int, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with get_session() as session:
        yield session


async def check_database_health(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connectivity with retry logic.

    Args:
        max_retries: Maximum number of connection attempts
        retry_delay: Base delay between retries in seconds

    Returns:
        True if database is healthy, False otherwise
    """
    for attempt in range(max_retries):
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                return True
        except (OperationalError, DBAPIError) as e:
            logger.warning(
                "Database health check failed",
                attempt=attempt + 1,
                max_retries=max_retries,
                error=str(e),
            )
        except SQLAlchemyError as e:
            logger.error(
                "Database health check failed - SQLAlchemy error",
                attempt=attempt + 1,
                error=str(e),
                error_type=type(e).__name__,
            )
        except (OSError, RuntimeError) as e:
            logger.error(
                "Database health check failed - unexpected error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay * (2**attempt))

    logger.error("Database health check failed after all retries", max_retries=max_retries)
    return False


async def close_database_connections() -> None:
    """
    Close all database connections and dispose of the engine.

    Called during application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        try:
            await _engine.dispose()
            logger.info("Database connections closed and engine disposed")
        finally:
            _engine = None
            _session_factory = None
