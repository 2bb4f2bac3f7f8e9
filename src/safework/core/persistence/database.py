"""Async database engine and session management.

The session factory is created explicitly and passed to every
collaborator; there is no module-level session state.

Provides:
- init_database: Initialize async SQLAlchemy engine and create tables
- create_session_factory: Create async session factory
- session_scope: Async context manager committing or rolling back a session
- shutdown: Clean shutdown of database connections
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base

SessionFactory = async_sessionmaker[AsyncSession]


async def init_database(db_url: str = "sqlite+aiosqlite:///safework.db") -> AsyncEngine:
    """Initialize async database engine and create all tables.

    Args:
        db_url: SQLAlchemy database URL (default: SQLite in current directory)

    Returns:
        AsyncEngine instance

    Example:
        >>> engine = await init_database("sqlite+aiosqlite:///:memory:")
    """
    engine = create_async_engine(db_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Create async session factory from engine.

    expire_on_commit=False keeps loaded rows usable after commit, which
    async code relies on since lazy loads are not available.

    Args:
        engine: AsyncEngine instance from init_database()

    Returns:
        async_sessionmaker configured for async usage
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on exception.

    Example:
        >>> async with session_scope(factory) as session:
        ...     session.add(record)
        ...     # Auto-commits on exit
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def shutdown(engine: AsyncEngine) -> None:
    """Close all connections and dispose of the connection pool."""
    await engine.dispose()
