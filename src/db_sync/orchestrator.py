"""Group sync orchestration: check every target of an instance group.

For one check cycle the source is inspected once (schema plus, when data
sync is on, row counts and key sets).  Each non-source member is then
checked concurrently, bounded by an ``asyncio.Semaphore``, using only its
own connector from the ``ConnectionPool``.

A failure on one target becomes an ``error`` status with the captured
message; it never stops the other targets from being reported.

Usage:
    orchestrator = GroupSyncOrchestrator(pool, max_concurrency=4)
    status = await orchestrator.check_group_status(group, connections)
    for target in status.targets:
        print(target.connection_name, target.schema_status, target.data_status)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.data.diff import collect_snapshots, compare_snapshot_sets
from db_sync.data.models import TableDataDiff, TableSnapshot
from db_sync.dialects import get_dialect
from db_sync.history.models import ConnectionRecord, InstanceGroup
from db_sync.pool import ConnectionPool
from db_sync.schema.differ import diff_schemas
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.migration import generate_migration
from db_sync.schema.models import Schema, SchemaDiff

logger = logging.getLogger(__name__)


# ============================================================================
# Status models
# ============================================================================


class SyncStatus(str, Enum):
    IN_SYNC = "in_sync"
    OUT_OF_SYNC = "out_of_sync"
    ERROR = "error"
    UNCHECKED = "unchecked"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceGroupTargetStatus(BaseModel):
    """Sync status of one target connection against the group's source.

    Attributes:
        schema_diff_count: Number of leaf diff entries (columns, indexes,
            foreign keys, added/removed tables).
        migration_sql: Statements that would bring the target's schema in
            line with the source.
        data_diff_summary: ``"All tables in sync"`` or
            ``"N table(s) out of sync"``.
        error: Messages of failed checks, joined with ``"; "``.
    """

    connection_id: str
    connection_name: str
    schema_status: SyncStatus = SyncStatus.UNCHECKED
    schema_diff_count: int | None = None
    schema_diff: SchemaDiff | None = None
    migration_sql: list[str] | None = None
    data_status: SyncStatus = SyncStatus.UNCHECKED
    data_diff_summary: str | None = None
    data_diff: list[TableDataDiff] | None = None
    error: str | None = None
    checked_at: datetime | None = None


class GroupSyncStatus(BaseModel):
    group_id: str
    group_name: str
    source_connection_id: str | None = None
    source_connection_name: str | None = None
    targets: list[InstanceGroupTargetStatus] = Field(default_factory=list)
    last_checked: datetime = Field(default_factory=_utcnow)


def schema_name_for(group: InstanceGroup, connection: ConnectionRecord) -> str:
    """Schema to compare on ``connection``.

    The group's ``sync_target_schema`` wins for every member.  Otherwise
    MySQL/MariaDB use the connection's database, SQLite uses ``main``, and
    other engines use the connection's default schema (``public`` if unset).
    """
    if group.sync_target_schema:
        return group.sync_target_schema
    dialect = get_dialect(connection.engine)
    if dialect.family == "mysql":
        return connection.database or connection.default_schema or ""
    if dialect.name == "sqlite":
        return "main"
    return connection.default_schema or dialect.default_schema or "public"


def summarize_data(diffs: list[TableDataDiff]) -> tuple[SyncStatus, str]:
    out_of_sync = [d for d in diffs if not d.in_sync]
    if not out_of_sync:
        return SyncStatus.IN_SYNC, "All tables in sync"
    return SyncStatus.OUT_OF_SYNC, f"{len(out_of_sync)} table(s) out of sync"


@dataclass
class _SourceState:
    """What one check cycle learned about the source."""

    schema: Schema | None = None
    snapshots: dict[str, TableSnapshot] = field(default_factory=dict)
    error: str | None = None


# ============================================================================
# Orchestrator
# ============================================================================


class GroupSyncOrchestrator:
    """Fan-out of schema and data checks across an instance group's targets.

    Args:
        pool: Connection pool supplying one serialized connector per id.
        max_concurrency: Maximum number of targets checked at once.
    """

    def __init__(self, pool: ConnectionPool, max_concurrency: int = 4) -> None:
        self._pool = pool
        self._max_concurrency = max(1, max_concurrency)

    async def check_group_status(
        self, group: InstanceGroup, connections: list[ConnectionRecord]
    ) -> GroupSyncStatus:
        """Check every non-source member of the group.

        Args:
            group: The instance group.
            connections: Member connection records (including the source).

        Returns:
            ``GroupSyncStatus``.  With no members the target list is empty;
            with no source every member is reported ``unchecked``.
        """
        status = GroupSyncStatus(
            group_id=group.id,
            group_name=group.name,
            source_connection_id=group.source_connection_id,
        )
        if not connections:
            return status

        if not group.source_connection_id:
            status.targets = [
                InstanceGroupTargetStatus(connection_id=c.id, connection_name=c.name)
                for c in connections
            ]
            return status

        source = next((c for c in connections if c.id == group.source_connection_id), None)
        targets = [c for c in connections if c.id != group.source_connection_id]
        if source is not None:
            status.source_connection_name = source.name

        state = await self._inspect_source(group, source)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(target: ConnectionRecord) -> InstanceGroupTargetStatus:
            async with semaphore:
                try:
                    return await self._check_target(group, source, target, state)
                except Exception as e:
                    # Isolated per target
                    logger.exception("Unexpected failure checking %s", target.name)
                    failed = InstanceGroupTargetStatus(
                        connection_id=target.id,
                        connection_name=target.name,
                        checked_at=_utcnow(),
                        error=f"{type(e).__name__}: {e}",
                    )
                    self._mark_error(group, failed)
                    return failed

        status.targets = list(await asyncio.gather(*(bounded(t) for t in targets)))
        logger.info(
            "Checked group %s: %d target(s), %d with errors",
            group.name,
            len(status.targets),
            sum(1 for t in status.targets if t.error),
        )
        return status

    async def check_single_target(
        self,
        group: InstanceGroup,
        connections: list[ConnectionRecord],
        connection_id: str,
    ) -> InstanceGroupTargetStatus:
        """Recheck one member of the group.

        Raises:
            ValueError: If ``connection_id`` is not a member of the group.
        """
        target = next((c for c in connections if c.id == connection_id), None)
        if target is None:
            raise ValueError(f"Connection {connection_id} is not a member of group {group.id}")
        if not group.source_connection_id or connection_id == group.source_connection_id:
            return InstanceGroupTargetStatus(
                connection_id=target.id, connection_name=target.name
            )

        source = next((c for c in connections if c.id == group.source_connection_id), None)
        state = await self._inspect_source(group, source)
        return await self._check_target(group, source, target, state)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _inspect_source(
        self, group: InstanceGroup, source: ConnectionRecord | None
    ) -> _SourceState:
        state = _SourceState()
        if source is None:
            state.error = f"Source connection {group.source_connection_id} is not a group member"
            return state
        if not (group.sync_schema or group.sync_data):
            return state
        try:
            async with self._pool.acquire(source.id) as connector:
                state.schema = await SchemaIntrospector(connector).introspect(
                    schema_name_for(group, source)
                )
                if group.sync_data:
                    state.snapshots = await collect_snapshots(
                        connector, state.schema.tables, state.schema.schema_name
                    )
        except (errors.SyncEngineError, ValueError) as e:
            state.error = f"Source {source.name}: {e}"
            logger.warning("Source check failed for group %s: %s", group.name, e)
        return state

    async def _check_target(
        self,
        group: InstanceGroup,
        source: ConnectionRecord | None,
        target: ConnectionRecord,
        state: _SourceState,
    ) -> InstanceGroupTargetStatus:
        status = InstanceGroupTargetStatus(
            connection_id=target.id,
            connection_name=target.name,
            checked_at=_utcnow(),
        )
        if not (group.sync_schema or group.sync_data):
            return status

        messages: list[str] = []
        if state.error is not None or state.schema is None:
            self._mark_error(group, status)
            messages.append(state.error or "Source schema unavailable")
            status.error = "; ".join(messages)
            return status

        try:
            async with self._pool.acquire(target.id) as connector:
                target_schema = await SchemaIntrospector(connector).introspect(
                    schema_name_for(group, target)
                )

                if group.sync_schema:
                    diff = diff_schemas(state.schema, target_schema)
                    count = sum(1 for e in diff.flatten() if not e.children)
                    status.schema_diff = diff
                    status.schema_diff_count = count
                    status.migration_sql = generate_migration(
                        diff,
                        connector.engine,
                        target_schema.schema_name if group.sync_target_schema else None,
                    )
                    status.schema_status = (
                        SyncStatus.IN_SYNC if count == 0 else SyncStatus.OUT_OF_SYNC
                    )

                if group.sync_data:
                    try:
                        status.data_diff = await self._data_diff(
                            connector, state, target_schema
                        )
                        status.data_status, status.data_diff_summary = summarize_data(
                            status.data_diff
                        )
                    except errors.SyncEngineError as e:
                        status.data_status = SyncStatus.ERROR
                        messages.append(f"Data check failed: {e}")
        except (errors.SyncEngineError, ValueError) as e:
            self._mark_error(group, status)
            messages.append(str(e))
            logger.warning("Check of %s failed: %s", target.name, e)

        status.error = "; ".join(messages) if messages else None
        return status

    @staticmethod
    async def _data_diff(
        connector: DatabaseConnector, state: _SourceState, target_schema: Schema
    ) -> list[TableDataDiff]:
        assert state.schema is not None
        common = [
            t for t in target_schema.tables if t.name in state.snapshots
        ]
        source_keys = {name: snap.primary_key for name, snap in state.snapshots.items()}
        target_snaps = await collect_snapshots(
            connector,
            common,
            target_schema.schema_name,
            primary_keys=source_keys,
        )
        source_snaps = {n: state.snapshots[n] for n in target_snaps}
        return compare_snapshot_sets(source_snaps, target_snaps)

    @staticmethod
    def _mark_error(group: InstanceGroup, status: InstanceGroupTargetStatus) -> None:
        if group.sync_schema and status.schema_status == SyncStatus.UNCHECKED:
            status.schema_status = SyncStatus.ERROR
        if group.sync_data and status.data_status == SyncStatus.UNCHECKED:
            status.data_status = SyncStatus.ERROR
