"""Full table-set copy from a source to a target, in FK dependency order.

Unlike incremental sync, this reloads every selected table:

1. Order tables parents-first with ``resolve_order()``
2. Empty target tables children-first (``DELETE FROM``; ``TRUNCATE`` fails
   on FK-referenced tables in PostgreSQL and MySQL)
3. Copy all source rows parents-first, in insert batches

When the FK graph has a cycle or a self-reference, the cycle is broken at
the edge with the lexicographically largest ``(table, fk_name)`` and the
target's FK enforcement is switched off for the duration of the copy where
the dialect supports it.  Per-table failures are isolated in
``table_results``; remaining tables still run.

Usage:
    from db_sync.data.dump_restore import dump_and_restore

    result = await dump_and_restore(source, target, "public")
    for table_result in result.table_results:
        print(table_result.table, table_result.rows, table_result.error)
"""

from __future__ import annotations

import logging

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.data.diff import fetch_rows
from db_sync.data.models import DumpRestoreOptions, DumpRestoreResult, TableDumpResult
from db_sync.dialects import EngineDialect, get_dialect
from db_sync.schema.dependencies import DependencyOrder, resolve_order
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.models import Schema

logger = logging.getLogger(__name__)


async def _set_fk_checks(
    connector: DatabaseConnector,
    dialect: EngineDialect,
    enabled: bool,
    result: DumpRestoreResult,
) -> bool:
    """Run the dialect's FK-check toggle.  Returns False if it failed."""
    statements = dialect.enable_fk_checks if enabled else dialect.disable_fk_checks
    if not statements:
        result.warnings.append(
            f"{dialect.name} cannot toggle foreign key checks; "
            "loading relies on dependency order only"
        )
        return False
    action = "enable" if enabled else "disable"
    try:
        for sql in statements:
            await connector.execute(sql)
    except errors.SyncEngineError as e:
        result.warnings.append(f"Failed to {action} foreign key checks: {e}")
        logger.warning("Failed to %s foreign key checks on %s: %s", action, dialect.name, e)
        return False
    return True


def _resolve_tables(schema: Schema, options: DumpRestoreOptions) -> tuple[list[str], list[str]]:
    """Split requested tables into known and unknown names."""
    if options.tables is None:
        return schema.table_names, []
    known = [t for t in options.tables if schema.get_table(t) is not None]
    unknown = [t for t in options.tables if schema.get_table(t) is None]
    return known, unknown


async def dump_and_restore(
    source: DatabaseConnector,
    target: DatabaseConnector,
    schema: str | Schema | None = None,
    options: DumpRestoreOptions | None = None,
    target_schema: str | None = None,
) -> DumpRestoreResult:
    """Replace target table contents with the source's.

    Args:
        source: Source connector.
        target: Target connector.  Tables must already exist there.
        schema: Source schema name (engine default when ``None``), or an
            already introspected source ``Schema``.
        options: Truncation, table selection, batch size, strictness.
        target_schema: Target schema name; defaults to ``schema``.

    Returns:
        ``DumpRestoreResult`` with one ``TableDumpResult`` per table in load
        order.  ``success`` is True only if no table recorded an error.

    Example:
        result = await dump_and_restore(
            source, target, "public",
            DumpRestoreOptions(tables=["customers", "orders"]),
        )
        if not result.success:
            print(result.errors)
    """
    options = options or DumpRestoreOptions()
    result = DumpRestoreResult()
    if isinstance(schema, Schema):
        source_model = schema
    else:
        source_model = None
    if target_schema is None:
        target_schema = source_model.schema_name if source_model else schema

    try:
        if source_model is None:
            source_model = await SchemaIntrospector(source).introspect(schema)
        target_schema = SchemaIntrospector(target).resolve_schema_name(target_schema)
    except errors.SyncEngineError as e:
        result.errors.append(e.describe())
        return result

    names, unknown = _resolve_tables(source_model, options)
    for name in unknown:
        message = errors.ValidationError(f"Table '{name}' not found in source").describe()
        result.table_results.append(TableDumpResult(table=name, error=message))
        result.errors.append(f"{name}: {message}")

    tables = [source_model.get_table(n) for n in names]
    try:
        ordering = resolve_order(tables, strict=options.strict_ordering)
    except errors.DependencyCycleError as e:
        result.broken_dependencies = list(e.broken_edges)
        result.errors.append(e.describe())
        return result
    _record_ordering(ordering, result)

    dialect = get_dialect(target.engine)
    checks_disabled = False
    if ordering.has_cycles:
        checks_disabled = await _set_fk_checks(target, dialect, False, result)

    failed: dict[str, str] = {}
    try:
        if options.truncate_target:
            for name in ordering.reverse_order:
                try:
                    await target.execute(dialect.delete_all(name, target_schema))
                except errors.SyncEngineError as e:
                    failed[name] = f"Truncate failed: {e}"
                    logger.warning("Truncate of %s failed: %s", name, e)

        for name in ordering.order:
            table_result = TableDumpResult(table=name)
            result.table_results.append(table_result)
            if name in failed:
                table_result.error = failed[name]
                result.errors.append(f"{name}: {failed[name]}")
                continue
            try:
                table_result.rows = await _copy_table(
                    source, target, name,
                    source_model.schema_name, target_schema,
                    options.batch_size,
                )
                result.tables_processed += 1
                result.rows_copied += table_result.rows
            except errors.SyncEngineError as e:
                table_result.error = e.describe()
                result.errors.append(f"{name}: {table_result.error}")
                logger.warning("Copy of %s failed: %s", name, e)
    finally:
        if checks_disabled:
            await _set_fk_checks(target, dialect, True, result)

    result.success = not result.errors
    logger.info(
        "Dump & restore: %d table(s), %d row(s) copied, %d error(s)",
        result.tables_processed, result.rows_copied, len(result.errors),
    )
    return result


def _record_ordering(ordering: DependencyOrder, result: DumpRestoreResult) -> None:
    result.broken_dependencies = list(ordering.broken_edges)
    for table, fk_name, parent in ordering.broken_edges:
        result.warnings.append(
            f"Foreign key cycle broken at {table}.{fk_name} -> {parent}"
        )
    for table in ordering.self_references:
        result.warnings.append(f"Table {table} references itself")


async def _copy_table(
    source: DatabaseConnector,
    target: DatabaseConnector,
    table: str,
    source_schema: str | None,
    target_schema: str | None,
    batch_size: int,
) -> int:
    """Copy every source row of one table; return the row count."""
    rows = await fetch_rows(source, table, source_schema)
    if not rows:
        return 0
    columns = list(rows[0].keys())
    sql = get_dialect(target.engine).insert_row(table, columns, target_schema)
    for start in range(0, len(rows), batch_size):
        batch = rows[start : start + batch_size]
        params = [{f"c_{i}": row[c] for i, c in enumerate(columns)} for row in batch]
        await target.execute(sql, params)
    return len(rows)
