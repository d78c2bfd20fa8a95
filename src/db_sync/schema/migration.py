"""Migration SQL generation from a schema diff.

Turns a ``SchemaDiff`` into an ordered list of DDL statements for the
target engine.  The generator does not execute anything; ``apply_migration``
runs a statement list against a connector.

Statement order:

1. Drop changed/removed foreign keys
2. Drop changed/removed indexes
3. Drop removed columns
4. Alter modified columns
5. Drop removed tables (children first)
6. Create added tables (parents first)
7. Add new columns
8. Create new/changed indexes (including those of new tables)
9. Add new/changed foreign keys (including those of new tables)

Statements the target engine cannot express are emitted as ``--`` comment
lines so a preview still shows them.

Usage:
    from db_sync.schema.migration import generate_migration

    statements = generate_migration(diff, "postgres")
    # ['ALTER TABLE "users" ADD COLUMN "name" text;']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.dialects import EngineDialect, get_dialect
from db_sync.schema.dependencies import resolve_order
from db_sync.schema.models import (
    Column,
    DiffEntry,
    DiffType,
    ForeignKey,
    Index,
    ObjectKind,
    SchemaDiff,
    Table,
)

logger = logging.getLogger(__name__)


@dataclass
class _Phases:
    drop_foreign_keys: list[str] = field(default_factory=list)
    drop_indexes: list[str] = field(default_factory=list)
    drop_columns: list[str] = field(default_factory=list)
    alter_columns: list[str] = field(default_factory=list)
    drop_tables: list[str] = field(default_factory=list)
    create_tables: list[str] = field(default_factory=list)
    add_columns: list[str] = field(default_factory=list)
    create_indexes: list[str] = field(default_factory=list)
    add_foreign_keys: list[str] = field(default_factory=list)

    def statements(self) -> list[str]:
        return (
            self.drop_foreign_keys
            + self.drop_indexes
            + self.drop_columns
            + self.alter_columns
            + self.drop_tables
            + self.create_tables
            + self.add_columns
            + self.create_indexes
            + self.add_foreign_keys
        )


def is_comment(statement: str) -> bool:
    """True for ``--`` lines that document a change instead of applying it."""
    return statement.lstrip().startswith("--")


def _table_entry_statements(
    entry: DiffEntry,
    phases: _Phases,
    dialect: EngineDialect,
    schema_name: str | None,
    source_engine: str,
) -> None:
    """Queue the child statements of one ``modified`` table entry."""
    table = entry.table
    for child in entry.children:
        before, after = child.before, child.after

        if child.object_kind == ObjectKind.COLUMN:
            if child.type == DiffType.ADDED:
                assert isinstance(after, Column)
                phases.add_columns.append(
                    dialect.add_column(table, after, schema_name, source_engine)
                )
            elif child.type == DiffType.REMOVED:
                assert isinstance(before, Column)
                phases.drop_columns.append(dialect.drop_column(table, before.name, schema_name))
            else:
                assert isinstance(before, Column) and isinstance(after, Column)
                phases.alter_columns.extend(
                    dialect.alter_column(table, before, after, schema_name, source_engine)
                )

        elif child.object_kind == ObjectKind.INDEX:
            if before is not None:
                assert isinstance(before, Index)
                phases.drop_indexes.append(dialect.drop_index(table, before, schema_name))
            if after is not None:
                assert isinstance(after, Index)
                phases.create_indexes.append(dialect.create_index(table, after, schema_name))

        elif child.object_kind == ObjectKind.FOREIGN_KEY:
            if before is not None:
                assert isinstance(before, ForeignKey)
                phases.drop_foreign_keys.append(
                    dialect.drop_foreign_key(table, before, schema_name)
                )
            if after is not None:
                assert isinstance(after, ForeignKey)
                phases.add_foreign_keys.append(
                    dialect.add_foreign_key(table, after, schema_name)
                )


def generate_migration(
    diff: SchemaDiff,
    target_engine: str | None = None,
    schema_name: str | None = None,
) -> list[str]:
    """Generate ordered DDL that turns the diff's target into its source.

    Args:
        diff: Result of ``diff_schemas(source, target)``.
        target_engine: Engine to generate for.  Defaults to
            ``diff.target_engine``.
        schema_name: Qualify table references with this schema.  Unqualified
            by default, so statements apply to the connection's default
            schema.

    Returns:
        Ordered statement list.  Empty for an empty diff.

    Raises:
        ValueError: If the target engine is not supported.

    Example:
        statements = generate_migration(diff_schemas(source, target), "postgres")
        for sql in statements:
            print(sql)
    """
    dialect = get_dialect(target_engine or diff.target_engine)
    source_engine = diff.source_engine
    phases = _Phases()

    added_tables: list[Table] = []
    removed_tables: list[Table] = []
    for entry in diff.entries:
        if entry.object_kind != ObjectKind.TABLE:
            continue
        if entry.type == DiffType.ADDED:
            assert isinstance(entry.after, Table)
            added_tables.append(entry.after)
        elif entry.type == DiffType.REMOVED:
            assert isinstance(entry.before, Table)
            removed_tables.append(entry.before)
        else:
            _table_entry_statements(entry, phases, dialect, schema_name, source_engine)

    # Removed tables drop children first.  FKs that close a cycle between
    # removed tables are dropped up front.
    if removed_tables:
        removed_order = resolve_order(removed_tables)
        removed_by_name = {t.name: t for t in removed_tables}
        if dialect.supports_alter_foreign_keys:
            for name, fk_name, _ in removed_order.broken_edges:
                for fk in removed_by_name[name].foreign_keys:
                    if fk.name == fk_name:
                        phases.drop_foreign_keys.append(
                            dialect.drop_foreign_key(name, fk, schema_name)
                        )
        for name in removed_order.reverse_order:
            phases.drop_tables.append(dialect.drop_table(name, schema_name))

    if added_tables:
        added_order = resolve_order(added_tables)
        added_by_name = {t.name: t for t in added_tables}
        for name in added_order.order:
            table = added_by_name[name]
            phases.create_tables.append(
                dialect.create_table(table, schema_name, source_engine)
            )
            for index in table.indexes:
                if not index.is_primary:
                    phases.create_indexes.append(
                        dialect.create_index(name, index, schema_name)
                    )
            # Engines without ALTER ... ADD FOREIGN KEY get them inline
            if dialect.supports_alter_foreign_keys:
                for fk in table.foreign_keys:
                    phases.add_foreign_keys.append(
                        dialect.add_foreign_key(name, fk, schema_name)
                    )

    statements = phases.statements()
    logger.debug(
        "Generated %d statement(s) for %s: %s",
        len(statements), dialect.name, statements,
    )
    return statements


# ============================================================================
# Apply
# ============================================================================


class MigrationApplyResult(BaseModel):
    """Outcome of ``apply_migration()``.

    Attributes:
        success: True if every executable statement succeeded.
        executed: Statements that ran successfully, in order.
        skipped: Comment lines that were not executed.
        error: Message of the first failure.
        failed_statement: The statement that failed.
    """

    success: bool = False
    executed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    error: str | None = None
    failed_statement: str | None = None


async def apply_migration(
    connector: DatabaseConnector, statements: list[str]
) -> MigrationApplyResult:
    """Execute statements in order, stopping at the first failure.

    Comment lines are skipped.  Each statement commits on its own; engines
    with non-transactional DDL (MySQL, MariaDB) cannot roll back earlier
    statements anyway, so nothing is wrapped in a transaction.

    Example:
        result = await apply_migration(connector, statements)
        if not result.success:
            print(f"Failed at {result.failed_statement}: {result.error}")
    """
    result = MigrationApplyResult()
    for sql in statements:
        if is_comment(sql):
            result.skipped.append(sql)
            continue
        try:
            await connector.execute(sql)
        except errors.SyncEngineError as e:
            result.error = e.describe()
            result.failed_statement = sql
            logger.warning("Migration statement failed: %s (%s)", sql, e)
            return result
        result.executed.append(sql)

    result.success = True
    logger.info(
        "Applied %d statement(s), skipped %d comment(s)",
        len(result.executed), len(result.skipped),
    )
    return result
