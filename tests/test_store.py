"""Tests for the metadata store (aiosqlite-backed)."""

from datetime import datetime, timedelta, timezone

import pytest

from db_sync.history.models import ConnectionRecord, InstanceGroup, MigrationRecord
from db_sync.history.store import MetadataStore


def _store(tmp_path) -> MetadataStore:
    return MetadataStore(f"sqlite:///{tmp_path / 'meta.db'}")


def _conn(conn_id: str, name: str) -> ConnectionRecord:
    return ConnectionRecord(id=conn_id, name=name, engine="sqlite", url=f"sqlite:///{conn_id}.db")


# ============================================================================
# Connections and groups
# ============================================================================


class TestConnectionsAndGroups:
    """Verify connection and group persistence."""

    @pytest.mark.asyncio
    async def test_connection_upsert(self, tmp_path) -> None:
        """Saving twice replaces the record."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.save_connection(_conn("c1", "First"))
            await store.save_connection(_conn("c1", "Renamed"))
            assert (await store.get_connection("c1")).name == "Renamed"
            assert [c.id for c in await store.list_connections()] == ["c1"]
            assert await store.get_connection("missing") is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_group_members_in_order(self, tmp_path) -> None:
        """Group members come back in their saved order."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            for conn_id, name in (("a", "Alpha"), ("b", "Beta"), ("c", "Gamma")):
                await store.save_connection(_conn(conn_id, name))
            await store.save_group(InstanceGroup(
                id="g1", name="Main", source_connection_id="c", connection_ids=["c", "a", "b"],
            ))
            group = await store.get_group("g1")
            assert group.connection_ids == ["c", "a", "b"]
            assert group.source_connection_id == "c"
            members = await store.list_group_connections("g1")
            assert [m.name for m in members] == ["Gamma", "Alpha", "Beta"]

            await store.save_group(group.model_copy(update={"connection_ids": ["a"]}))
            assert (await store.get_group("g1")).connection_ids == ["a"]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_delete_connection_removes_membership(self, tmp_path) -> None:
        """Deleting a connection drops it from groups."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.save_connection(_conn("a", "Alpha"))
            await store.save_group(InstanceGroup(id="g1", name="Main", connection_ids=["a"]))
            assert await store.delete_connection("a")
            assert (await store.get_group("g1")).connection_ids == []
            assert not await store.delete_connection("a")
        finally:
            await store.close()


# ============================================================================
# Migration history
# ============================================================================


class TestMigrationHistory:
    """Verify append, query, name resolution, and deletion."""

    @pytest.mark.asyncio
    async def test_record_resolves_names(self, tmp_path) -> None:
        """Stored records come back with connection and group names."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.save_connection(_conn("src", "Source"))
            await store.save_connection(_conn("tgt", "Target"))
            await store.save_group(InstanceGroup(id="g1", name="Main"))
            record = await store.record_migration(MigrationRecord(
                source_connection_id="src",
                target_connection_id="tgt",
                group_id="g1",
                sql_statements=['ALTER TABLE "users" ADD COLUMN "name" text;'],
            ))
            assert record.source_connection_name == "Source"
            assert record.target_connection_name == "Target"
            assert record.group_name == "Main"
            assert record.sql_statements == ['ALTER TABLE "users" ADD COLUMN "name" text;']
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unknown_group_is_stored_as_given(self, tmp_path) -> None:
        """An invalid group reference keeps its id and resolves no name."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            record = await store.record_migration(MigrationRecord(
                source_connection_id="src", target_connection_id="tgt", group_id="no-such-group",
            ))
            assert record.group_id == "no-such-group"
            assert record.group_name is None
            assert record.target_connection_name is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_list_newest_first_and_filter(self, tmp_path) -> None:
        """Records list newest first, filtered by target when asked."""
        store = _store(tmp_path)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        try:
            await store.create_all()
            for i, target in enumerate(["t1", "t2", "t1"]):
                await store.record_migration(MigrationRecord(
                    id=f"m{i}", source_connection_id="s", target_connection_id=target,
                    applied_at=base + timedelta(hours=i),
                ))
            assert [m.id for m in await store.list_migrations()] == ["m2", "m1", "m0"]
            assert [m.id for m in await store.list_migrations("t1")] == ["m2", "m0"]
            assert [m.id for m in await store.list_migrations(limit=1)] == ["m2"]
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_failed_migration_kept(self, tmp_path) -> None:
        """Failures are recorded with their error."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.record_migration(MigrationRecord(
                id="bad", source_connection_id="s", target_connection_id="t",
                success=False, error="ExecutionError: boom",
            ))
            record = await store.get_migration("bad")
            assert not record.success
            assert record.error == "ExecutionError: boom"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path) -> None:
        """Deleting returns True once, then False."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.record_migration(MigrationRecord(
                id="m", source_connection_id="s", target_connection_id="t",
            ))
            assert await store.delete_migration("m")
            assert await store.get_migration("m") is None
            assert not await store.delete_migration("m")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_group_deletion_keeps_history(self, tmp_path) -> None:
        """Records outlive their group; the name stops resolving."""
        store = _store(tmp_path)
        try:
            await store.create_all()
            await store.save_group(InstanceGroup(id="g1", name="Main"))
            await store.record_migration(MigrationRecord(
                id="m", source_connection_id="s", target_connection_id="t", group_id="g1",
            ))
            await store.delete_group("g1")
            record = await store.get_migration("m")
            assert record.group_id == "g1"
            assert record.group_name is None
        finally:
            await store.close()
