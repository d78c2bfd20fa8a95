"""Sync service: the engine's operations addressed by connection id.

``SyncService`` ties the engine modules to a ``MetadataStore`` (connection
records, groups, migration history) and a ``ConnectionPool`` (live
connectors).  Every method takes connection ids; schema names default to the
connection's own default schema (its database on MySQL/MariaDB).

Read-only operations (introspection, comparison, status) raise
``SyncEngineError`` subclasses.  Mutating operations return result objects
that carry per-table errors.

Usage:
    service = await SyncService.from_config(load_sync_config())
    try:
        statements = await service.generate_migration("prod", "staging")
        record = await service.apply_migration("prod", "staging", statements)
        status = await service.get_group_sync_status("main")
    finally:
        await service.close()
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from db_sync import errors
from db_sync.config.models import SyncConfig, SyncSettings
from db_sync.data.diff import TableDataDiffCache, compute_row_diff, compute_table_diffs
from db_sync.data.dump_restore import dump_and_restore
from db_sync.data.models import (
    BatchSyncResult,
    DumpRestoreOptions,
    DumpRestoreResult,
    RowDiff,
    RowSyncResult,
    SyncOptions,
    SyncResult,
    TableDataDiff,
)
from db_sync.data.sync import sync_rows, sync_table, sync_tables
from db_sync.history.models import InstanceGroup, MigrationRecord
from db_sync.history.store import MetadataStore
from db_sync.orchestrator import (
    GroupSyncOrchestrator,
    GroupSyncStatus,
    InstanceGroupTargetStatus,
)
from db_sync.pool import ConnectionPool, ConnectorFactory
from db_sync.schema.differ import diff_schemas
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.migration import apply_migration, generate_migration
from db_sync.schema.models import Schema, SchemaDiff

logger = logging.getLogger(__name__)


class SyncService:
    """Facade over the metadata store, connection pool, and engine modules.

    Args:
        store: Metadata store holding connections, groups, and history.
        settings: Engine settings (concurrency, batch size, cache TTL).
        connector_factory: Overrides how connectors are built from records.
    """

    def __init__(
        self,
        store: MetadataStore,
        settings: SyncSettings | None = None,
        connector_factory: ConnectorFactory | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or SyncSettings()
        self.pool = ConnectionPool(store.get_connection, connector_factory)
        self.orchestrator = GroupSyncOrchestrator(self.pool, self.settings.max_concurrency)
        self._row_counts = TableDataDiffCache(
            ttl_seconds=self.settings.row_count_cache_minutes * 60
        )

    @classmethod
    async def from_config(
        cls,
        config: SyncConfig,
        connector_factory: ConnectorFactory | None = None,
    ) -> SyncService:
        """Build a service and register the config's connections and groups.

        Records from the config replace stored records with the same id.
        """
        store = MetadataStore(config.sync.metadata_url)
        await store.create_all()
        for record in config.connection_records():
            await store.save_connection(record)
        for group in config.group_records():
            await store.save_group(group)
        logger.info(
            "Loaded %d connection(s) and %d group(s) from config",
            len(config.connections), len(config.groups),
        )
        return cls(store, config.sync, connector_factory)

    async def close(self) -> None:
        """Disconnect all connectors and dispose of the metadata engine."""
        try:
            await self.pool.close_all()
        finally:
            await self.store.close()

    async def _schema_name(self, connection_id: str, schema: str | None) -> str | None:
        if schema:
            return schema
        record = await self.pool.get_record(connection_id)
        return record.default_schema

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def get_schemas(self, connection_id: str) -> list[str]:
        """List the user schemas of a connection."""
        async with self.pool.acquire(connection_id) as connector:
            return await SchemaIntrospector(connector).list_schemas()

    async def get_schema(self, connection_id: str, schema: str | None = None) -> Schema:
        """Introspect one schema of a connection."""
        schema = await self._schema_name(connection_id, schema)
        async with self.pool.acquire(connection_id) as connector:
            return await SchemaIntrospector(connector).introspect(schema)

    async def compare_schemas(
        self,
        source_id: str,
        target_id: str,
        source_schema: str | None = None,
        target_schema: str | None = None,
    ) -> SchemaDiff:
        """Diff the target's schema against the source's (source is desired)."""
        source_schema = await self._schema_name(source_id, source_schema)
        target_schema = await self._schema_name(target_id, target_schema)
        async with self.pool.acquire_pair(source_id, target_id) as (source, target):
            source_model = await SchemaIntrospector(source).introspect(source_schema)
            target_model = await SchemaIntrospector(target).introspect(target_schema)
        return diff_schemas(source_model, target_model)

    async def generate_migration(
        self,
        source_id: str,
        target_id: str,
        source_schema: str | None = None,
        target_schema: str | None = None,
    ) -> list[str]:
        """DDL for the target's engine that makes it match the source."""
        diff = await self.compare_schemas(source_id, target_id, source_schema, target_schema)
        return generate_migration(diff, diff.target_engine, target_schema)

    async def apply_migration(
        self,
        source_id: str,
        target_id: str,
        statements: list[str],
        source_schema: str | None = None,
        target_schema: str | None = None,
        group_id: str | None = None,
        description: str = "",
    ) -> MigrationRecord:
        """Run statements on the target and record the attempt in history.

        The record is written whether or not the migration succeeded;
        ``success`` and ``error`` tell which.  ``group_id`` is stored as
        given.

        Example:
            record = await service.apply_migration("prod", "staging", sql)
            if not record.success:
                print(record.error)
        """
        async with self.pool.acquire(target_id) as target:
            result = await apply_migration(target, statements)

        error = None
        if not result.success:
            error = result.error
            if result.failed_statement:
                error = f"{result.error} (statement: {result.failed_statement})"

        record = MigrationRecord(
            source_connection_id=source_id,
            target_connection_id=target_id,
            source_schema=source_schema,
            target_schema=target_schema,
            group_id=group_id,
            description=description,
            sql_statements=list(statements),
            success=result.success,
            error=error,
        )
        self._row_counts.invalidate()
        return await self.store.record_migration(record)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _sync_options(self, options: SyncOptions | None) -> SyncOptions:
        return options or SyncOptions(batch_size=self.settings.batch_size)

    async def get_table_row_counts(
        self,
        source_id: str,
        target_id: str,
        source_schema: str | None = None,
        target_schema: str | None = None,
        refresh: bool = False,
    ) -> list[TableDataDiff]:
        """Per-table row-count and key differences, cached for a while.

        Args:
            refresh: Recompute even if a cached result is still fresh.
        """
        source_schema = await self._schema_name(source_id, source_schema)
        target_schema = await self._schema_name(target_id, target_schema)
        key = (source_id, target_id, source_schema, target_schema)
        if refresh:
            self._row_counts.invalidate(key)

        async def compute() -> list[TableDataDiff]:
            async with self.pool.acquire_pair(source_id, target_id) as (source, target):
                return await compute_table_diffs(source, target, source_schema, target_schema)

        return await self._row_counts.get_or_compute(key, compute)

    async def get_table_data_diff(
        self,
        source_id: str,
        target_id: str,
        table: str,
        schema: str | None = None,
        target_schema: str | None = None,
        primary_keys: list[str] | None = None,
    ) -> RowDiff:
        """Row-level differences of one table, keyed by primary key.

        Raises:
            ValidationError: If the table is missing from the source or has
                no primary key and none is given.
        """
        schema = await self._schema_name(source_id, schema)
        target_schema = await self._schema_name(target_id, target_schema)
        async with self.pool.acquire_pair(source_id, target_id) as (source, target):
            source_table = await SchemaIntrospector(source).introspect_table(table, schema)
            if not source_table.columns:
                raise errors.ValidationError(f"Table '{table}' not found in source")
            return await compute_row_diff(
                source, target, source_table, schema, target_schema, primary_keys
            )

    async def sync_table_data(
        self,
        source_id: str,
        target_id: str,
        table: str,
        schema: str | None = None,
        target_schema: str | None = None,
        options: SyncOptions | None = None,
        primary_keys: list[str] | None = None,
    ) -> SyncResult:
        """Reconcile one table's rows on the target with the source."""
        schema = await self._schema_name(source_id, schema)
        target_schema = await self._schema_name(target_id, target_schema)
        async with self.pool.acquire_pair(source_id, target_id) as (source, target):
            result = await sync_table(
                source, target, schema, table,
                primary_keys=primary_keys,
                options=self._sync_options(options),
                target_schema=target_schema,
            )
        self._row_counts.invalidate()
        return result

    async def sync_all_tables(
        self,
        source_id: str,
        target_id: str,
        schema: str | None = None,
        tables: list[str] | None = None,
        options: SyncOptions | None = None,
        target_schema: str | None = None,
    ) -> BatchSyncResult:
        """Reconcile every (or the listed) table, parents first."""
        schema = await self._schema_name(source_id, schema)
        target_schema = await self._schema_name(target_id, target_schema)
        async with self.pool.acquire_pair(source_id, target_id) as (source, target):
            result = await sync_tables(
                source, target, schema,
                tables=tables,
                options=self._sync_options(options),
                target_schema=target_schema,
            )
        self._row_counts.invalidate()
        return result

    async def sync_rows(
        self,
        target_id: str,
        table: str,
        rows: list[dict[str, Any]],
        primary_keys: list[str],
        schema: str | None = None,
        mode: Literal["insert", "upsert"] = "upsert",
    ) -> RowSyncResult:
        """Write explicitly selected rows to the target."""
        schema = await self._schema_name(target_id, schema)
        async with self.pool.acquire(target_id) as target:
            result = await sync_rows(target, schema, table, rows, primary_keys, mode)
        self._row_counts.invalidate()
        return result

    async def dump_and_restore(
        self,
        source_id: str,
        target_id: str,
        schema: str | None = None,
        options: DumpRestoreOptions | None = None,
        target_schema: str | None = None,
    ) -> DumpRestoreResult:
        """Reload target tables from the source in dependency order."""
        schema = await self._schema_name(source_id, schema)
        target_schema = await self._schema_name(target_id, target_schema)
        options = options or DumpRestoreOptions(batch_size=self.settings.batch_size)
        async with self.pool.acquire_pair(source_id, target_id) as (source, target):
            result = await dump_and_restore(source, target, schema, options, target_schema)
        self._row_counts.invalidate()
        return result

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def _load_group(self, group_id: str) -> InstanceGroup:
        group = await self.store.get_group(group_id)
        if group is None:
            raise errors.ValidationError(f"Instance group not found: {group_id}")
        return group

    async def get_group_sync_status(self, group_id: str) -> GroupSyncStatus:
        """Check every target of a group against its source.

        Raises:
            db_sync.errors.ValidationError: If the group does not exist.
        """
        group = await self._load_group(group_id)
        connections = await self.store.list_group_connections(group_id)
        return await self.orchestrator.check_group_status(group, connections)

    async def check_single_target_status(
        self, group_id: str, connection_id: str
    ) -> InstanceGroupTargetStatus:
        """Recheck one member of a group.

        Raises:
            db_sync.errors.ValidationError: If the group does not exist or the
                connection is not one of its members.
        """
        group = await self._load_group(group_id)
        connections = await self.store.list_group_connections(group_id)
        try:
            return await self.orchestrator.check_single_target(group, connections, connection_id)
        except ValueError as e:
            raise errors.ValidationError(str(e)) from e

    # ------------------------------------------------------------------
    # Migration history
    # ------------------------------------------------------------------

    async def list_migrations(
        self, target_connection_id: str | None = None, limit: int | None = 100
    ) -> list[MigrationRecord]:
        return await self.store.list_migrations(target_connection_id, limit)

    async def get_migration(self, migration_id: str) -> MigrationRecord | None:
        return await self.store.get_migration(migration_id)

    async def delete_migration(self, migration_id: str) -> bool:
        return await self.store.delete_migration(migration_id)
