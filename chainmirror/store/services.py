"""SQLAlchemy implementation of the document store."""

from __future__ import annotations

import contextlib
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from chainmirror.common.time import utcnow
from chainmirror.registry.errors import PublishError

from .storage import StoreEntry, init_store_storage

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession

    from .protocol import JSONValue

    SessionFactory: typ.TypeAlias = async_sessionmaker[AsyncSession]


class SqlDocumentStore:
    """Persist JSON values in the ``store_entries`` table.

    Each write runs in its own transaction, so there is no isolation across
    keys: readers may observe a snapshot while it is being replaced.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Bind the store to an async session factory."""
        self._session_factory = session_factory

    async def set_json(self, key: str, value: JSONValue) -> None:
        """Insert or replace the value under ``key``.

        Raises
        ------
        PublishError
            If the database rejects the write.

        """
        try:
            async with self._session_factory() as session, session.begin():
                entry = await session.get(StoreEntry, key)
                if entry is None:
                    session.add(StoreEntry(key=key, value=value))
                else:
                    entry.value = value
                    entry.updated_at = utcnow()
        except SQLAlchemyError as exc:
            raise PublishError(key, exc) from exc

    async def get_json(self, key: str) -> JSONValue:
        """Return the value under ``key`` or ``None`` when absent."""
        async with self._session_factory() as session:
            entry = await session.get(StoreEntry, key)
            return None if entry is None else entry.value

    async def keys(self, prefix: str = "") -> list[str]:
        """Return sorted keys starting with ``prefix``."""
        query = select(StoreEntry.key).order_by(StoreEntry.key)
        if prefix:
            query = query.where(StoreEntry.key.startswith(prefix, autoescape=True))
        async with self._session_factory() as session:
            result = await session.scalars(query)
            return list(result)


@contextlib.asynccontextmanager
async def open_sql_store(database_url: str) -> cabc.AsyncIterator[SqlDocumentStore]:
    """Yield a store bound to ``database_url``, creating tables if needed.

    The engine is disposed on exit, so the store must not outlive the block.
    """
    engine = create_async_engine(database_url)
    try:
        await init_store_storage(engine)
        yield SqlDocumentStore(async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()
