"""Connection pool: one connector per connection id, serialized access.

``ConnectionPool`` owns connector lifetimes.  Connectors are created lazily
through a factory, connected on first acquire, and cached until
``close_all()``.  ``acquire()`` holds a per-connector ``asyncio.Lock`` for
the scope of the ``async with`` block, so only one operation at a time runs
against a given connection.

Usage:
    pool = ConnectionPool(store.get_connection)

    async with pool.acquire("prod") as connector:
        await connector.query("SELECT 1")

    await pool.close_all()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.history.models import ConnectionRecord

logger = logging.getLogger(__name__)

ConnectionLookup = Callable[[str], Awaitable[ConnectionRecord | None]]
ConnectorFactory = Callable[[ConnectionRecord], DatabaseConnector]


def _default_factory(record: ConnectionRecord) -> DatabaseConnector:
    from db_sync.connectors.sql import create_connector

    return create_connector(record)


class ConnectionPool:
    """Explicitly owned cache of live connectors keyed by connection id.

    Args:
        lookup: Async callable returning the ``ConnectionRecord`` for an id
            (or ``None`` if unknown), e.g. ``MetadataStore.get_connection``.
        connector_factory: Builds a connector from a record.  Defaults to
            ``db_sync.connectors.sql.create_connector``.
    """

    def __init__(
        self,
        lookup: ConnectionLookup,
        connector_factory: ConnectorFactory | None = None,
    ) -> None:
        self._lookup = lookup
        self._factory = connector_factory or _default_factory
        self._connectors: dict[str, DatabaseConnector] = {}
        self._records: dict[str, ConnectionRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connectors

    async def get_record(self, connection_id: str) -> ConnectionRecord:
        """Return the connection record, caching it for the pool's lifetime.

        Raises:
            db_sync.errors.ConnectionError: If the id is unknown.
        """
        if connection_id not in self._records:
            record = await self._lookup(connection_id)
            if record is None:
                raise errors.ConnectionError(f"Connection not found: {connection_id}")
            self._records[connection_id] = record
        return self._records[connection_id]

    async def _get_connector(self, connection_id: str) -> DatabaseConnector:
        async with self._create_lock:
            if connection_id not in self._connectors:
                record = await self.get_record(connection_id)
                try:
                    connector = self._factory(record)
                except ValueError as e:
                    # Unsupported URL scheme or engine in the stored record
                    raise errors.ConnectionError(
                        f"Invalid connection {connection_id}: {e}"
                    ) from e
                self._connectors[connection_id] = connector
                self._locks[connection_id] = asyncio.Lock()
                logger.debug("Created connector for %s (%s)", connection_id, record.engine)
            return self._connectors[connection_id]

    @asynccontextmanager
    async def acquire(self, connection_id: str) -> AsyncIterator[DatabaseConnector]:
        """Hold exclusive use of a connection's connector for the block.

        The connector is connected lazily on first use.  Acquiring the same
        id again inside the block deadlocks; acquire each id once.

        Raises:
            db_sync.errors.ConnectionError: If the id is unknown, its record
                has an unsupported URL or engine, or the connection cannot
                be opened.
        """
        connector = await self._get_connector(connection_id)
        async with self._locks[connection_id]:
            if not connector.is_connected():
                await connector.connect()
            yield connector

    @asynccontextmanager
    async def acquire_pair(
        self, source_id: str, target_id: str
    ) -> AsyncIterator[tuple[DatabaseConnector, DatabaseConnector]]:
        """Hold a source and a target connector together.

        Locks are taken in sorted id order so two operations pairing the same
        connections in opposite directions cannot deadlock.  When both ids are
        equal the same connector is returned twice.
        """
        async with AsyncExitStack() as stack:
            held: dict[str, DatabaseConnector] = {}
            for connection_id in sorted({source_id, target_id}):
                held[connection_id] = await stack.enter_async_context(
                    self.acquire(connection_id)
                )
            yield held[source_id], held[target_id]

    async def release(self, connection_id: str) -> None:
        """Disconnect and forget one connector (e.g. after its record changed)."""
        connector = self._connectors.pop(connection_id, None)
        self._records.pop(connection_id, None)
        lock = self._locks.pop(connection_id, None)
        if connector is None:
            return
        if lock is not None:
            async with lock:
                await connector.disconnect()
        else:
            await connector.disconnect()

    async def close_all(self) -> None:
        """Disconnect every cached connector."""
        for connection_id in list(self._connectors):
            try:
                await self.release(connection_id)
            except Exception as e:
                logger.warning("Failed to close connector %s: %s", connection_id, e)
