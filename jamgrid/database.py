"""Database connection and session management.

Two stores are involved: the local SQLite file written by the capture
pipeline, and the optional remote PostgreSQL database that observations are
replicated into.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from jamgrid.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for models stored in the local database."""

    pass


class RemoteBase(DeclarativeBase):
    """Base class for models stored in the remote database."""

    pass


settings = get_settings()


def make_local_engine(url: str) -> AsyncEngine:
    """Engine for the local SQLite store."""
    return create_async_engine(url, echo=settings.debug)


def make_remote_engine(url: str) -> AsyncEngine:
    """Engine for the remote PostgreSQL store."""
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
    )


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


local_engine = make_local_engine(settings.local_db_url)
local_session_maker = make_session_maker(local_engine)

remote_engine: AsyncEngine | None = None
remote_session_maker: async_sessionmaker[AsyncSession] | None = None

if settings.remote_database_url:
    remote_engine = make_remote_engine(settings.remote_database_url)
    remote_session_maker = make_session_maker(remote_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a local database session."""
    async with local_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine, base: type[DeclarativeBase]) -> None:
    """Create all tables of ``base`` that do not exist yet."""
    # Import models so they register with their metadata
    import jamgrid.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(base.metadata.create_all)


async def init_local_db() -> None:
    """Initialize the local database."""
    try:
        await create_tables(local_engine, Base)
        logger.info(f"Local database ready at {settings.local_db_url}")
    except Exception:
        logger.exception("Failed to initialize local database")
        raise


async def init_remote_db() -> None:
    """Initialize the remote database, if one is configured."""
    if remote_engine is None:
        logger.info("No remote database configured, replication disabled")
        return
    try:
        await create_tables(remote_engine, RemoteBase)
        logger.info("Remote database ready")
    except Exception:
        logger.exception("Failed to initialize remote database")
        raise


async def close_db() -> None:
    """Close database connections."""
    await local_engine.dispose()
    if remote_engine is not None:
        await remote_engine.dispose()
