"""End-to-end tests for SyncService over SQLite databases."""

from contextlib import asynccontextmanager

import pytest

from db_sync import errors
from db_sync.config.models import ConnectionProfile, GroupProfile, SyncConfig, SyncSettings
from db_sync.data.models import SyncOptions
from db_sync.orchestrator import SyncStatus
from db_sync.service import SyncService

SOURCE_DDL = (
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY,"
    " customer_id INTEGER REFERENCES customers(id), total NUMERIC)",
)


@pytest.fixture
def service_factory(seed_sqlite, sqlite_url):
    """Open a SyncService with a seeded source, an empty target, and one group."""

    @asynccontextmanager
    async def _open():
        source_url = await seed_sqlite(
            "source.db", *SOURCE_DDL,
            "INSERT INTO customers VALUES (1, 'a'), (2, 'b')",
            "INSERT INTO orders VALUES (10, 1, 5), (11, 2, 7)",
        )
        target_url = await seed_sqlite("target.db", "CREATE TABLE customers (id INTEGER PRIMARY KEY)")
        config = SyncConfig(
            sync=SyncSettings(metadata_url=sqlite_url("meta.db"), batch_size=1),
            connections={
                "src": ConnectionProfile(url=source_url, name="Source"),
                "tgt": ConnectionProfile(url=target_url, name="Target"),
            },
            groups={"main": GroupProfile(name="Main", source="src", members=["tgt"], sync_data=True)},
        )
        service = await SyncService.from_config(config)
        try:
            yield service
        finally:
            await service.close()

    return _open


# ============================================================================
# Config registration
# ============================================================================


class TestFromConfig:
    """Verify records are registered in the metadata store."""

    @pytest.mark.asyncio
    async def test_records_saved(self, service_factory) -> None:
        """Connections and groups from the config are stored."""
        async with service_factory() as service:
            source = await service.store.get_connection("src")
            group = await service.store.get_group("main")
        assert source.engine == "sqlite"
        assert source.name == "Source"
        assert group.connection_ids == ["src", "tgt"]
        assert service.settings.batch_size == 1


# ============================================================================
# Schema operations
# ============================================================================


class TestSchemaOperations:
    """Verify compare, generate, apply, and history."""

    @pytest.mark.asyncio
    async def test_compare_and_generate(self, service_factory) -> None:
        """The target's differences are reported and turned into DDL."""
        async with service_factory() as service:
            diff = await service.compare_schemas("src", "tgt")
            statements = await service.generate_migration("src", "tgt")
        assert diff.summary() == {"table_added": 1, "table_modified": 1, "column_added": 1}
        assert any('CREATE TABLE "orders"' in s for s in statements)
        assert any('ADD COLUMN "name"' in s for s in statements)

    @pytest.mark.asyncio
    async def test_apply_records_history(self, service_factory) -> None:
        """A successful apply converges the group and is recorded."""
        async with service_factory() as service:
            statements = await service.generate_migration("src", "tgt")
            record = await service.apply_migration(
                "src", "tgt", statements, group_id="main", description="initial"
            )
            status = await service.get_group_sync_status("main")
            history = await service.list_migrations("tgt")

        assert record.success
        assert record.group_name == "Main"
        assert record.target_connection_name == "Target"
        (target,) = status.targets
        assert target.schema_status == SyncStatus.IN_SYNC
        assert target.data_status == SyncStatus.OUT_OF_SYNC
        assert [m.id for m in history] == [record.id]

    @pytest.mark.asyncio
    async def test_failed_apply_is_recorded(self, service_factory) -> None:
        """A failed apply is still recorded, with the failing statement."""
        async with service_factory() as service:
            record = await service.apply_migration(
                "src", "tgt", ["CREATE TABLE t (id INTEGER);", "DROP TABLE missing;"]
            )
            stored = await service.get_migration(record.id)
            deleted = await service.delete_migration(record.id)
            remaining = await service.list_migrations()
        assert not stored.success
        assert stored.error.startswith("ExecutionError:")
        assert "(statement: DROP TABLE missing;)" in stored.error
        assert deleted
        assert remaining == []

    @pytest.mark.asyncio
    async def test_get_schema(self, service_factory) -> None:
        """Schemas are introspected by connection id."""
        async with service_factory() as service:
            schema = await service.get_schema("src")
            schemas = await service.get_schemas("src")
        assert schema.schema_name == "main"
        assert [t.name for t in schema.tables] == ["customers", "orders"]
        assert schemas == ["main"]

    @pytest.mark.asyncio
    async def test_unknown_connection(self, service_factory) -> None:
        """Unknown connection ids raise ConnectionError."""
        async with service_factory() as service:
            with pytest.raises(errors.ConnectionError):
                await service.get_schema("nope")


# ============================================================================
# Data operations
# ============================================================================


class TestDataOperations:
    """Verify data sync through the service."""

    @pytest.mark.asyncio
    async def test_sync_after_migration(self, service_factory) -> None:
        """After migrating, syncing all tables brings the data in line."""
        async with service_factory() as service:
            await service.apply_migration("src", "tgt", await service.generate_migration("src", "tgt"))
            before = await service.get_table_row_counts("src", "tgt")
            batch = await service.sync_all_tables("src", "tgt")
            after = await service.get_table_row_counts("src", "tgt")

        assert not all(d.in_sync for d in before)
        assert batch.status == "success"
        assert [r.table for r in batch.results] == ["customers", "orders"]
        assert all(d.in_sync for d in after)

    @pytest.mark.asyncio
    async def test_sync_table_and_rows(self, service_factory) -> None:
        """Single-table sync and explicit rows both write to the target."""
        async with service_factory() as service:
            await service.apply_migration("src", "tgt", await service.generate_migration("src", "tgt"))
            result = await service.sync_table_data(
                "src", "tgt", "customers", options=SyncOptions(delete_extra=True)
            )
            rows = await service.sync_rows("tgt", "customers", [{"id": 3, "name": "c"}], ["id"])
        assert result.inserted == 2
        assert rows.inserted == 1

    @pytest.mark.asyncio
    async def test_table_data_diff(self, service_factory) -> None:
        """Row-level diff lists source rows the target lacks."""
        async with service_factory() as service:
            await service.apply_migration("src", "tgt", await service.generate_migration("src", "tgt"))
            diff = await service.get_table_data_diff("src", "tgt", "customers")
            await service.sync_table_data("src", "tgt", "customers")
            after = await service.get_table_data_diff("src", "tgt", "customers")
        assert diff.primary_key == ["id"]
        assert [r["id"] for r in diff.missing_in_target] == [1, 2]
        assert diff.missing_in_source == []
        assert after.missing_in_target == []
        assert after.different == []

    @pytest.mark.asyncio
    async def test_table_data_diff_unknown_table(self, service_factory) -> None:
        """Tables missing from the source raise ValidationError."""
        async with service_factory() as service:
            with pytest.raises(errors.ValidationError, match="not found in source"):
                await service.get_table_data_diff("src", "tgt", "ghost")

    @pytest.mark.asyncio
    async def test_dump_and_restore(self, service_factory) -> None:
        """Dump and restore copies every row."""
        async with service_factory() as service:
            await service.apply_migration("src", "tgt", await service.generate_migration("src", "tgt"))
            result = await service.dump_and_restore("src", "tgt")
        assert result.success, result.errors
        assert result.rows_copied == 4


# ============================================================================
# Groups
# ============================================================================


class TestGroups:
    """Verify group lookups through the service."""

    @pytest.mark.asyncio
    async def test_unknown_group(self, service_factory) -> None:
        """Unknown groups raise ValidationError."""
        async with service_factory() as service:
            with pytest.raises(errors.ValidationError, match="Instance group not found"):
                await service.get_group_sync_status("nope")

    @pytest.mark.asyncio
    async def test_single_target(self, service_factory) -> None:
        """One member can be rechecked; non-members are rejected."""
        async with service_factory() as service:
            target = await service.check_single_target_status("main", "tgt")
            with pytest.raises(errors.ValidationError, match="not a member"):
                await service.check_single_target_status("main", "other")
        assert target.schema_status == SyncStatus.OUT_OF_SYNC
