"""Row-level reconciliation from a source table to a target table.

Rows are matched by primary key ("source wins"):

- rows only in the source are inserted when ``insert_missing``
- rows in both whose non-key values differ are updated when
  ``update_different``
- rows only in the target are deleted when ``delete_extra`` (destructive,
  off by default)

Writes are batched through ``DatabaseConnector.execute()`` with a list of
parameter dicts.  A failed batch is recorded in ``SyncResult.errors`` and
the remaining batches still run.

Usage:
    from db_sync.data.sync import sync_table
    from db_sync.data.models import SyncOptions

    result = await sync_table(
        source, target, "public", "users",
        options=SyncOptions(delete_extra=True),
    )
    print(result.inserted, result.updated, result.deleted, result.errors)
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.data.diff import compute_row_diff
from db_sync.data.models import BatchSyncResult, RowSyncResult, SyncOptions, SyncResult
from db_sync.dialects import get_dialect
from db_sync.schema.dependencies import resolve_order
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.models import Table

logger = logging.getLogger(__name__)


def _batches(rows: list[Any], size: int) -> list[list[Any]]:
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def _insert_params(rows: list[dict[str, Any]], columns: list[str]) -> list[dict[str, Any]]:
    return [{f"c_{i}": row.get(c) for i, c in enumerate(columns)} for row in rows]


def _update_params(
    rows: list[dict[str, Any]], columns: list[str], key_columns: list[str]
) -> list[dict[str, Any]]:
    params = []
    for row in rows:
        p = {f"s_{i}": row.get(c) for i, c in enumerate(columns)}
        p.update({f"k_{i}": row.get(c) for i, c in enumerate(key_columns)})
        params.append(p)
    return params


def _key_params(rows: list[dict[str, Any]], key_columns: list[str]) -> list[dict[str, Any]]:
    return [{f"k_{i}": row.get(c) for i, c in enumerate(key_columns)} for row in rows]


async def _run_batches(
    connector: DatabaseConnector,
    sql: str,
    params: list[dict[str, Any]],
    batch_size: int,
    label: str,
    result_errors: list[str],
) -> int:
    """Execute ``sql`` for each batch; return the number of rows in successful batches."""
    done = 0
    for batch in _batches(params, batch_size):
        try:
            await connector.execute(sql, batch)
        except errors.SyncEngineError as e:
            result_errors.append(f"{label} failed: {e}")
            logger.warning("%s batch of %d row(s) failed: %s", label, len(batch), e)
            continue
        done += len(batch)
    return done


async def reconcile_table(
    source: DatabaseConnector,
    target: DatabaseConnector,
    source_table: Table,
    target_table: Table,
    schema: str | None = None,
    target_schema: str | None = None,
    primary_keys: list[str] | None = None,
    options: SyncOptions | None = None,
) -> SyncResult:
    """Reconcile one table whose source and target definitions are known.

    Never raises for database or validation failures; they are recorded in
    the result's ``errors``.
    """
    options = options or SyncOptions()
    result = SyncResult(table=source_table.name)
    if target_schema is None:
        target_schema = schema

    pk = primary_keys or source_table.primary_key
    if not pk:
        err = errors.ValidationError(
            f"Table '{source_table.name}' has no primary key; it cannot be synced"
        )
        result.errors.append(err.describe())
        return result
    missing_keys = [c for c in pk if target_table.get_column(c) is None]
    if missing_keys:
        err = errors.ValidationError(
            f"Primary key column(s) {', '.join(missing_keys)} missing from "
            f"target table '{target_table.name}'"
        )
        result.errors.append(err.describe())
        return result

    try:
        diff = await compute_row_diff(
            source, target, source_table, schema, target_schema, primary_key=pk
        )
    except errors.SyncEngineError as e:
        result.errors.append(e.describe())
        return result

    dialect = get_dialect(target.engine)
    # Write only columns that exist on both sides, in target order
    source_columns = {c.name for c in source_table.columns}
    columns = [c.name for c in target_table.columns if c.name in source_columns]
    non_key = [c for c in columns if c not in pk]
    table = target_table.name

    if options.insert_missing and diff.missing_in_target:
        result.inserted = await _run_batches(
            target,
            dialect.insert_row(table, columns, target_schema),
            _insert_params(diff.missing_in_target, columns),
            options.batch_size,
            "Insert",
            result.errors,
        )

    if options.update_different and diff.different and non_key:
        result.updated = await _run_batches(
            target,
            dialect.update_row(table, non_key, pk, target_schema),
            _update_params([s for s, _ in diff.different], non_key, pk),
            options.batch_size,
            "Update",
            result.errors,
        )

    if options.delete_extra and diff.missing_in_source:
        result.deleted = await _run_batches(
            target,
            dialect.delete_row(table, pk, target_schema),
            _key_params(diff.missing_in_source, pk),
            options.batch_size,
            "Delete",
            result.errors,
        )

    logger.info(
        "Synced %s: %d inserted, %d updated, %d deleted, %d error(s)",
        table, result.inserted, result.updated, result.deleted, len(result.errors),
    )
    return result


async def sync_table(
    source: DatabaseConnector,
    target: DatabaseConnector,
    schema: str | None,
    table: str,
    primary_keys: list[str] | None = None,
    options: SyncOptions | None = None,
    target_schema: str | None = None,
) -> SyncResult:
    """Make one target table's rows match the source table.

    Args:
        source: Source connector.
        target: Target connector.
        schema: Source schema name (engine default when ``None``).
        table: Table name, expected on both sides.
        primary_keys: Key columns; defaults to the source table's primary key.
        options: What to insert, update, and delete.
        target_schema: Target schema name; defaults to ``schema``.

    Returns:
        ``SyncResult``.  A table without a primary key yields a
        ``ValidationError: ...`` entry in ``errors`` and no writes.

    Example:
        result = await sync_table(source, target, "public", "users")
        if result.errors:
            print(result.errors)
    """
    result = SyncResult(table=table)
    if target_schema is None:
        target_schema = schema
    try:
        source_table = await SchemaIntrospector(source).introspect_table(table, schema)
        target_table = await SchemaIntrospector(target).introspect_table(table, target_schema)
    except errors.SyncEngineError as e:
        result.errors.append(e.describe())
        return result

    for side, definition in (("source", source_table), ("target", target_table)):
        if not definition.columns:
            err = errors.ValidationError(f"Table '{table}' not found in {side}")
            result.errors.append(err.describe())
            return result

    return await reconcile_table(
        source,
        target,
        source_table,
        target_table,
        schema,
        target_schema,
        primary_keys,
        options,
    )


async def sync_tables(
    source: DatabaseConnector,
    target: DatabaseConnector,
    schema: str | None = None,
    tables: list[str] | None = None,
    options: SyncOptions | None = None,
    target_schema: str | None = None,
    primary_keys: dict[str, list[str]] | None = None,
) -> BatchSyncResult:
    """Sync several tables, isolating each table's failure.

    Tables run sequentially, parents before children.  One table's error
    never stops the others.

    Args:
        tables: Tables to sync; defaults to every table present on both
            sides.
        primary_keys: Per-table key overrides.
    """
    batch = BatchSyncResult()
    primary_keys = primary_keys or {}
    if target_schema is None:
        target_schema = schema

    try:
        source_model = await SchemaIntrospector(source).introspect(schema)
        target_model = await SchemaIntrospector(target).introspect(target_schema)
    except errors.SyncEngineError as e:
        logger.warning("Introspection failed before syncing: %s", e)
        batch.errors.append(e.describe())
        for name in tables or []:
            batch.results.append(SyncResult(table=name, errors=[e.describe()]))
        return batch

    names = tables if tables is not None else [
        n for n in source_model.table_names if target_model.get_table(n) is not None
    ]
    known = [source_model.get_table(n) for n in names if source_model.get_table(n) is not None]
    order = resolve_order(known).order
    # Unknown tables keep their requested position at the end
    order += [n for n in names if source_model.get_table(n) is None]

    for name in order:
        source_table = source_model.get_table(name)
        target_table = target_model.get_table(name)
        if source_table is None or target_table is None:
            side = "source" if source_table is None else "target"
            err = errors.ValidationError(f"Table '{name}' not found in {side}")
            batch.results.append(SyncResult(table=name, errors=[err.describe()]))
            continue
        try:
            result = await reconcile_table(
                source,
                target,
                source_table,
                target_table,
                source_model.schema_name,
                target_model.schema_name,
                primary_keys.get(name),
                options,
            )
        except Exception as e:
            logger.warning("Sync of %s failed: %s", name, e)
            result = SyncResult(table=name, errors=[f"{type(e).__name__}: {e}"])
        batch.results.append(result)

    logger.info(
        "Synced %d table(s): %d succeeded, %d failed",
        len(batch.results), batch.succeeded, batch.failed,
    )
    return batch


async def sync_rows(
    target: DatabaseConnector,
    schema: str | None,
    table: str,
    rows: list[dict[str, Any]],
    primary_keys: list[str],
    mode: Literal["insert", "upsert"] = "upsert",
) -> RowSyncResult:
    """Push explicit rows into a target table.

    Each row is checked for existence by key.  Missing rows are inserted;
    existing rows are updated in ``upsert`` mode and left alone in
    ``insert`` mode.  Failures are recorded per row.
    Without key columns nothing is written and a validation error is
    recorded.
    """
    result = RowSyncResult(table=table)
    if not primary_keys:
        err = errors.ValidationError(f"No primary key given for table '{table}'")
        result.errors.append(err.describe())
        return result
    if not rows:
        return result

    dialect = get_dialect(target.engine)
    try:
        target_table = await SchemaIntrospector(target).introspect_table(table, schema)
    except errors.SyncEngineError as e:
        result.errors.append(e.describe())
        return result
    target_columns = [c.name for c in target_table.columns]
    non_key = [c for c in target_columns if c not in primary_keys]

    for row in rows:
        try:
            found = await target.query(
                dialect.row_exists(table, primary_keys, schema),
                _key_params([row], primary_keys)[0],
            )
            if found.rows:
                row_non_key = [c for c in non_key if c in row]
                if mode == "upsert" and row_non_key:
                    await target.execute(
                        dialect.update_row(table, row_non_key, primary_keys, schema),
                        _update_params([row], row_non_key, primary_keys)[0],
                    )
                    result.updated += 1
                continue
            columns = [c for c in target_columns if c in row]
            await target.execute(
                dialect.insert_row(table, columns, schema),
                _insert_params([row], columns)[0],
            )
            result.inserted += 1
        except errors.SyncEngineError as e:
            result.errors.append(f"Row sync failed: {e}")
    return result
