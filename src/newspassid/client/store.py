"""Durable key/value store for the visitor's current identifier.

Failures never propagate: a failed read is reported as "absent", a failed
write or clear is logged and dropped. Callers can therefore treat the store
as best-effort, the way page code treats browser storage that may be
disabled by policy.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from newspassid.db import init_db, make_engine, make_session_factory
from newspassid.models import StoredValue

logger = logging.getLogger(__name__)


class LocalIdentifierStore:
    """Async get/set/clear over the ``stored_values`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    async def open(cls, url: str | None = None) -> LocalIdentifierStore:
        """Create an engine for ``url``, make sure the table exists, return the store.

        The store owns the engine; call ``aclose()`` when done.
        """
        engine = make_engine(url)
        store = cls(make_session_factory(engine), engine=engine)
        try:
            await init_db(engine)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("[STORE] unable to create local store: %s", e)
        return store

    async def aclose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def get(self, key: str) -> str | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StoredValue.value).where(StoredValue.key == key)
                )
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("[STORE] read failed: %s", e)
            return None

    async def set(self, key: str, value: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.merge(StoredValue(key=key, value=value))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("[STORE] write failed: %s", e)

    async def clear(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(StoredValue).where(StoredValue.key == key))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("[STORE] clear failed: %s", e)
