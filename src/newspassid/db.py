"""Database connection and session management for the local identifier store."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from newspassid.config import settings
from newspassid.models import Base


def make_engine(url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine for the local store (SQLite via aiosqlite by default)."""
    return create_async_engine(
        url or settings.local_store_url,
        echo=settings.local_store_echo if echo is None else echo,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the store's tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
