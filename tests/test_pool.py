"""Tests for the connection pool."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from db_sync import errors
from db_sync.history.models import ConnectionRecord
from db_sync.pool import ConnectionPool


def _record(conn_id: str) -> ConnectionRecord:
    return ConnectionRecord(id=conn_id, name=conn_id, engine="postgres", url="postgresql://h/db")


@pytest.fixture
def pool(make_connector):
    """Pool over two known ids with recording connectors."""
    records = {"a": _record("a"), "b": _record("b")}
    created = []

    async def lookup(connection_id):
        return records.get(connection_id)

    def factory(record):
        connector = make_connector(record.engine)
        created.append(connector)
        return connector

    p = ConnectionPool(lookup, factory)
    p.created = created
    return p


# ============================================================================
# Acquire
# ============================================================================


class TestAcquire:
    """Verify lazy creation, reuse, and unknown ids."""

    @pytest.mark.asyncio
    async def test_lazy_connect_and_reuse(self, pool) -> None:
        """The connector is created and connected once, then reused."""
        assert "a" not in pool
        async with pool.acquire("a") as first:
            assert first.is_connected()
        async with pool.acquire("a") as second:
            assert second is first
        assert "a" in pool
        assert len(pool.created) == 1
        assert first.connect_count == 1

    @pytest.mark.asyncio
    async def test_reconnects_when_dropped(self, pool) -> None:
        """A connector found disconnected is connected again."""
        async with pool.acquire("a") as connector:
            await connector.disconnect()
        async with pool.acquire("a") as connector:
            assert connector.is_connected()
        assert connector.connect_count == 2

    @pytest.mark.asyncio
    async def test_unknown_id(self, pool) -> None:
        """Unknown ids raise ConnectionError."""
        with pytest.raises(errors.ConnectionError, match="Connection not found: zzz"):
            async with pool.acquire("zzz"):
                pass

    @pytest.mark.asyncio
    async def test_invalid_record_url(self) -> None:
        """A record the default factory rejects raises ConnectionError."""
        record = ConnectionRecord(id="bad", name="bad", engine="postgres", url="postgress://u@h/db")

        async def lookup(connection_id):
            return record

        pool = ConnectionPool(lookup)
        with pytest.raises(errors.ConnectionError, match="Invalid connection bad"):
            async with pool.acquire("bad"):
                pass
        assert "bad" not in pool

    @pytest.mark.asyncio
    async def test_get_record(self, pool) -> None:
        """Records are looked up through the pool."""
        assert (await pool.get_record("b")).id == "b"

    @pytest.mark.asyncio
    async def test_acquire_pair(self, pool) -> None:
        """A pair yields both connectors in argument order."""
        async with pool.acquire_pair("b", "a") as (source, target):
            assert source is not target
        async with pool.acquire("a") as a:
            assert a is target

    @pytest.mark.asyncio
    async def test_acquire_pair_same_id(self, pool) -> None:
        """Pairing an id with itself returns one connector twice."""
        async with pool.acquire_pair("a", "a") as (source, target):
            assert source is target


# ============================================================================
# Release
# ============================================================================


class TestRelease:
    """Verify connectors are disconnected and forgotten."""

    @pytest.mark.asyncio
    async def test_release(self, pool) -> None:
        """release disconnects one connector; the next acquire builds a new one."""
        async with pool.acquire("a") as old:
            pass
        await pool.release("a")
        assert not old.is_connected()
        assert "a" not in pool
        async with pool.acquire("a") as new:
            assert new is not old

    @pytest.mark.asyncio
    async def test_release_unknown_is_noop(self, pool) -> None:
        """Releasing an id never acquired does nothing."""
        await pool.release("a")
        assert pool.created == []

    @pytest.mark.asyncio
    async def test_close_all(self, pool) -> None:
        """close_all disconnects every cached connector."""
        async with pool.acquire_pair("a", "b"):
            pass
        await pool.close_all()
        assert [c.is_connected() for c in pool.created] == [False, False]
        assert "a" not in pool and "b" not in pool

    @pytest.mark.asyncio
    async def test_close_all_survives_failing_disconnect(self) -> None:
        """A connector that fails to close does not stop the others."""
        broken = MagicMock(is_connected=MagicMock(return_value=True))
        broken.disconnect = AsyncMock(side_effect=RuntimeError("socket gone"))
        healthy = MagicMock(is_connected=MagicMock(return_value=True))
        healthy.disconnect = AsyncMock()
        connectors = {"a": broken, "b": healthy}

        async def lookup(connection_id):
            return _record(connection_id)

        pool = ConnectionPool(lookup, lambda record: connectors[record.id])
        async with pool.acquire_pair("a", "b"):
            pass
        await pool.close_all()

        broken.disconnect.assert_awaited_once()
        healthy.disconnect.assert_awaited_once()
        assert "a" not in pool and "b" not in pool
