"""Database engine configuration.

Uses SQLModel with async SQLite by default.
The database URL can be configured via SANDPOOL_DATABASE_URL environment variable.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from sandpool.config import get_settings

# Engine instance (lazy initialization)
_engine: AsyncEngine | None = None


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; in-memory SQLite shares one connection."""
    if database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.rstrip("/").endswith("aiosqlite:")
    ):
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(database_url, echo=echo, future=True)


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, echo=settings.debug)
    return _engine


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize the database, creating all tables.

    Call this on application startup.
    """
    from sandpool.db import models as _models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close the database connection.

    Call this on application shutdown.
    """
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def make_session_factory(engine: AsyncEngine | None = None) -> sessionmaker:
    return sessionmaker(
        engine or get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def get_session(engine: AsyncEngine | None = None) -> AsyncGenerator[AsyncSession]:
    """Get an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(select(LeaseRow))
    """
    async_session = make_session_factory(engine)
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
