"""Table data comparison between a source and a target connection.

Read-only and stateless: every call re-queries both sides.  Row counts come
from ``COUNT(*)``; missing-row counters come from a primary key set
comparison and are left as ``None`` for tables without a primary key.

``TableDataDiffCache`` is an opt-in caller-side cache, since counting large
tables is expensive.

Usage:
    from db_sync.data.diff import compute_table_diffs

    diffs = await compute_table_diffs(source, target, "public")
    out_of_sync = [d.table for d in diffs if not d.in_sync]
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.data.models import RowDiff, TableDataDiff, TableSnapshot
from db_sync.dialects import get_dialect
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.models import Table

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Value normalization
# ------------------------------------------------------------------


def normalize_value(value: Any) -> Any:
    """Convert a driver value to a hashable, engine-independent form.

    Used only for comparing rows; writes always use the native values.

    Examples:
        >>> normalize_value(UUID("12345678-1234-5678-1234-567812345678"))
        '12345678-1234-5678-1234-567812345678'
        >>> normalize_value(Decimal("10.50"))
        '10.5'
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return format(value.normalize(), "f")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def row_key(row: dict[str, Any], primary_key: list[str]) -> tuple:
    return tuple(normalize_value(row.get(c)) for c in primary_key)


def rows_differ(source_row: dict[str, Any], target_row: dict[str, Any], columns: list[str]) -> bool:
    """True if any of ``columns`` has a different normalized value."""
    return any(
        normalize_value(source_row.get(c)) != normalize_value(target_row.get(c))
        for c in columns
    )


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


async def count_rows(connector: DatabaseConnector, table: str, schema: str | None = None) -> int:
    dialect = get_dialect(connector.engine)
    result = await connector.query(dialect.count_rows(table, schema))
    if not result.rows:
        return 0
    return int(next(iter(result.rows[0].values())))


async def fetch_rows(
    connector: DatabaseConnector,
    table: str,
    schema: str | None = None,
    order_by: list[str] | None = None,
    columns: list[str] | None = None,
) -> list[dict[str, Any]]:
    dialect = get_dialect(connector.engine)
    result = await connector.query(dialect.select_all(table, schema, order_by, columns))
    return result.rows


async def collect_snapshot(
    connector: DatabaseConnector,
    table: str,
    primary_key: list[str],
    schema: str | None = None,
) -> TableSnapshot:
    """Count one table's rows and, if it has a primary key, read its key set."""
    snapshot = TableSnapshot(
        table=table,
        count=await count_rows(connector, table, schema),
        primary_key=primary_key,
    )
    if primary_key:
        rows = await fetch_rows(connector, table, schema, columns=primary_key)
        snapshot.keys = {row_key(r, primary_key) for r in rows}
    return snapshot


async def collect_snapshots(
    connector: DatabaseConnector,
    tables: list[Table],
    schema: str | None = None,
    primary_keys: dict[str, list[str]] | None = None,
) -> dict[str, TableSnapshot]:
    """Snapshot several tables sequentially on one connection.

    Args:
        primary_keys: Per-table key override.  Targets are snapshotted with
            the source's key columns so both key sets line up.
    """
    primary_keys = primary_keys or {}
    snapshots: dict[str, TableSnapshot] = {}
    for table in tables:
        pk = primary_keys.get(table.name, table.primary_key)
        if pk and any(table.get_column(c) is None for c in pk):
            # Key columns missing on this side: counts only
            pk = []
        snapshots[table.name] = await collect_snapshot(connector, table.name, pk, schema)
    return snapshots


def compare_snapshots(source: TableSnapshot, target: TableSnapshot) -> TableDataDiff:
    """Compare two snapshots of the same table.

    Example:
        >>> s = TableSnapshot(table="t", count=2, primary_key=["id"], keys={(1,), (2,)})
        >>> t = TableSnapshot(table="t", count=2, primary_key=["id"], keys={(1,), (3,)})
        >>> d = compare_snapshots(s, t)
        >>> (d.missing_in_target, d.missing_in_source)
        (1, 1)
    """
    diff = TableDataDiff(
        table=source.table,
        source_count=source.count,
        target_count=target.count,
    )
    if source.keys is not None and target.keys is not None:
        diff.missing_in_target = len(source.keys - target.keys)
        diff.missing_in_source = len(target.keys - source.keys)
    return diff


def compare_snapshot_sets(
    source: dict[str, TableSnapshot], target: dict[str, TableSnapshot]
) -> list[TableDataDiff]:
    """Diff every table present on both sides, sorted by table name."""
    return [
        compare_snapshots(source[name], target[name])
        for name in sorted(set(source) & set(target))
    ]


async def compute_table_diffs(
    source: DatabaseConnector,
    target: DatabaseConnector,
    schema: str | None = None,
    target_schema: str | None = None,
    tables: list[str] | None = None,
) -> list[TableDataDiff]:
    """Compare row counts and key sets of every table present on both sides.

    Args:
        source: Source connector.
        target: Target connector.
        schema: Source schema name (engine default when ``None``).
        target_schema: Target schema name; defaults to ``schema``.
        tables: Restrict the comparison to these table names.

    Returns:
        One ``TableDataDiff`` per common table, sorted by name.

    Raises:
        IntrospectionError: If either schema cannot be read.
        ExecutionError: If a count or key query fails.
    """
    if target_schema is None:
        target_schema = schema
    source_model = await SchemaIntrospector(source).introspect(schema)
    target_model = await SchemaIntrospector(target).introspect(target_schema)

    common = sorted(set(source_model.table_names) & set(target_model.table_names))
    if tables is not None:
        common = [t for t in common if t in set(tables)]

    source_tables = [source_model.get_table(n) for n in common]
    target_tables = [target_model.get_table(n) for n in common]
    source_keys = {t.name: t.primary_key for t in source_tables}

    source_snaps = await collect_snapshots(source, source_tables, source_model.schema_name)
    target_snaps = await collect_snapshots(
        target, target_tables, target_model.schema_name, primary_keys=source_keys
    )
    diffs = compare_snapshot_sets(source_snaps, target_snaps)
    logger.info(
        "Compared %d table(s): %d out of sync",
        len(diffs), sum(1 for d in diffs if not d.in_sync),
    )
    return diffs


async def compute_row_diff(
    source: DatabaseConnector,
    target: DatabaseConnector,
    table: Table,
    schema: str | None = None,
    target_schema: str | None = None,
    primary_key: list[str] | None = None,
) -> RowDiff:
    """Find missing and differing rows of one table, keyed by primary key.

    Non-key columns are compared only where they exist on both sides.

    Raises:
        ValidationError: If no primary key is given and the table has none.
    """
    pk = primary_key or table.primary_key
    if not pk:
        raise errors.ValidationError(
            f"Table '{table.name}' has no primary key; rows cannot be matched"
        )
    if target_schema is None:
        target_schema = schema

    source_rows = await fetch_rows(source, table.name, schema, order_by=pk)
    target_rows = await fetch_rows(target, table.name, target_schema, order_by=pk)

    source_map = {row_key(r, pk): r for r in source_rows}
    target_map = {row_key(r, pk): r for r in target_rows}

    diff = RowDiff(table=table.name, primary_key=pk)
    compare_columns: list[str] | None = None
    for key, source_row in source_map.items():
        target_row = target_map.get(key)
        if target_row is None:
            diff.missing_in_target.append(source_row)
            continue
        if compare_columns is None:
            compare_columns = [c for c in source_row if c in target_row and c not in pk]
        if rows_differ(source_row, target_row, compare_columns):
            diff.different.append((source_row, target_row))

    for key, target_row in target_map.items():
        if key not in source_map:
            diff.missing_in_source.append(target_row)
    return diff


# ------------------------------------------------------------------
# Caching
# ------------------------------------------------------------------


class TableDataDiffCache:
    """Caller-side TTL cache for ``compute_table_diffs`` results.

    Keyed by ``(source_id, target_id, schema)``.  Entries older than
    ``ttl_seconds`` are recomputed on the next ``get_or_compute()``.

    Example:
        cache = TableDataDiffCache(ttl_seconds=30 * 60)
        diffs = await cache.get_or_compute(
            ("prod", "staging", "public"),
            lambda: compute_table_diffs(source, target, "public"),
        )
    """

    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, list[TableDataDiff]]] = {}

    def get(self, key: tuple) -> list[TableDataDiff] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        return value

    def put(self, key: tuple, value: list[TableDataDiff]) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: tuple | None = None) -> None:
        """Drop one entry, or everything when ``key`` is ``None``."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_compute(
        self,
        key: tuple,
        compute: Callable[[], Awaitable[list[TableDataDiff]]],
    ) -> list[TableDataDiff]:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        self.put(key, value)
        return value
