"""Database connection and session management."""
from typing import Any, Dict

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fx_platform.config import get_settings
from fx_platform.database.models import Base

logger = structlog.get_logger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the database engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: Dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
        if make_url(settings.database_url).get_backend_name() != "sqlite":
            kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_recycle=3600,  # Recycle connections after 1 hour
            )
        _engine = create_async_engine(settings.database_url, **kwargs)
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory with the settings every component expects."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the session factory.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = create_session_factory(get_engine())
    return _async_session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize database tables.

    Creates all tables defined in models if they don't exist, retrying while
    the database is still coming up.
    """
    engine = engine or get_engine()
    settings = get_settings()

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type((OperationalError, OSError)),
        stop=stop_after_attempt(settings.database_connect_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=16),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "database_connect_retry",
                    attempt=attempt.retry_state.attempt_number,
                )
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections and dispose of the engine."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
