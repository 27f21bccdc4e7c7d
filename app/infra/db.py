"""
Database infrastructure configuration

SQLAlchemy async engine and session management.
"""

from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from app.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.db_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            poolclass=AsyncAdaptedQueuePool,
        )
    return options


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Variable to override session in tests
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Yields a session and closes it after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives a request (background side effects)"""
    return AsyncSessionLocal


async def close_db_connection():
    """Close database connection pool"""
    await engine.dispose()
