"""
Database Connection Module
Configures async SQLAlchemy engine and session factory.
"""

import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fin_analytics.config import settings
from fin_analytics.database.base import Base

# Disable SQLAlchemy engine query logging
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Args:
        database_url: SQLAlchemy async URL (postgresql+asyncpg, sqlite+aiosqlite)
        **kwargs: Extra engine options

    Returns:
        AsyncEngine
    """
    options = {"echo": False, "pool_pre_ping": True}
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autoflush=False,
    )


# Engine and session factory for the configured database.
# No connection is opened until the first session is used.
async_engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides an async database session.

    Usage:
        @app.get("/health-score")
        async def health_score(session: AsyncSession = Depends(get_async_session)):
            ...

    Yields:
        AsyncSession: An async SQLAlchemy session.

    Note:
        Transactions are committed automatically on success, rolled back on error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Initialize database tables.

    Note:
        In production, use Alembic migrations instead.
        This is useful for testing and initial development.
    """
    # Register models on the metadata
    import fin_analytics.models  # noqa: F401

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Close database connections.
    Call this during application shutdown.
    """
    await (engine or async_engine).dispose()
