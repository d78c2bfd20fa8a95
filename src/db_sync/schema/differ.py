"""Structural diff between two normalized schemas.

Pure logic: no I/O, no database connections.

Tables are matched by name.  Tables only in the source are ``added``, only
in the target are ``removed``, and common tables are diffed column by
column (by name), then index by index and foreign key by foreign key.
Indexes and foreign keys are matched by name first, then by their column
signature, so engine-generated names (``fk_orders_0`` on SQLite versus
``orders_customer_id_fkey`` on PostgreSQL) do not show up as drop+add pairs.

The differ never detects renames: a renamed column is a ``removed`` plus an
``added`` entry.

Usage:
    from db_sync.schema.differ import diff_schemas

    diff = diff_schemas(source_schema, target_schema)
    if not diff.is_empty:
        print(diff.format_report())
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from typing import TypeVar

from db_sync.schema.models import (
    Column,
    DiffEntry,
    DiffType,
    ForeignKey,
    Index,
    ObjectKind,
    Schema,
    SchemaDiff,
    Table,
)

# Column attributes that make a column "modified" when they differ
COLUMN_ATTRIBUTES = ("data_type", "nullable", "is_primary_key", "default_value")

_Named = TypeVar("_Named", Index, ForeignKey)


def _column_changes(before: Column, after: Column) -> list[str]:
    changes = []
    for attr in COLUMN_ATTRIBUTES:
        old, new = getattr(before, attr), getattr(after, attr)
        if attr == "data_type":
            old, new = old.lower(), new.lower()
        if old != new:
            changes.append(attr)
    return changes


def _index_signature(index: Index) -> Hashable:
    return tuple(index.columns)


def _index_changes(before: Index, after: Index) -> list[str]:
    changes = []
    if before.columns != after.columns:
        changes.append("columns")
    if before.is_unique != after.is_unique:
        changes.append("is_unique")
    return changes


def _fk_action(action: str | None) -> str:
    return (action or "NO ACTION").upper()


def _fk_signature(fk: ForeignKey) -> Hashable:
    return (tuple(fk.columns), fk.referenced_table, tuple(fk.referenced_columns))


def _fk_changes(before: ForeignKey, after: ForeignKey) -> list[str]:
    changes = []
    if before.columns != after.columns:
        changes.append("columns")
    if before.referenced_table != after.referenced_table:
        changes.append("referenced_table")
    if before.referenced_columns != after.referenced_columns:
        changes.append("referenced_columns")
    if _fk_action(before.on_delete) != _fk_action(after.on_delete):
        changes.append("on_delete")
    if _fk_action(before.on_update) != _fk_action(after.on_update):
        changes.append("on_update")
    return changes


# ============================================================================
# Per-table diffs
# ============================================================================


def diff_columns(target: Table, source: Table) -> list[DiffEntry]:
    """Diff columns by name: source order first, then removed columns."""
    entries: list[DiffEntry] = []
    target_columns = {c.name: c for c in target.columns}
    source_names = {c.name for c in source.columns}

    for column in source.columns:
        path = f"{source.name}.{column.name}"
        existing = target_columns.get(column.name)
        if existing is None:
            entries.append(
                DiffEntry(
                    type=DiffType.ADDED,
                    object_kind=ObjectKind.COLUMN,
                    path=path,
                    table=source.name,
                    after=column,
                )
            )
            continue
        changes = _column_changes(existing, column)
        if changes:
            entries.append(
                DiffEntry(
                    type=DiffType.MODIFIED,
                    object_kind=ObjectKind.COLUMN,
                    path=path,
                    table=source.name,
                    before=existing,
                    after=column,
                    changes=changes,
                )
            )

    for column in target.columns:
        if column.name not in source_names:
            entries.append(
                DiffEntry(
                    type=DiffType.REMOVED,
                    object_kind=ObjectKind.COLUMN,
                    path=f"{target.name}.{column.name}",
                    table=target.name,
                    before=column,
                )
            )
    return entries


def _match(
    target_items: list[_Named],
    source_items: list[_Named],
    signature: Callable[[_Named], Hashable],
) -> tuple[list[tuple[_Named, _Named]], list[_Named], list[_Named]]:
    """Pair items by name, then by signature.

    Returns ``(pairs of (target, source), source-only, target-only)``, each
    sorted by source name (target name for target-only).
    """
    target_by_name = {i.name: i for i in target_items}
    pairs: list[tuple[_Named, _Named]] = []
    unmatched_source: list[_Named] = []
    matched_target: set[str] = set()

    for item in sorted(source_items, key=lambda i: i.name):
        existing = target_by_name.get(item.name)
        if existing is not None:
            pairs.append((existing, item))
            matched_target.add(existing.name)
        else:
            unmatched_source.append(item)

    leftovers = [i for i in sorted(target_items, key=lambda i: i.name) if i.name not in matched_target]
    source_only: list[_Named] = []
    for item in unmatched_source:
        sig = signature(item)
        candidate = next((t for t in leftovers if signature(t) == sig), None)
        if candidate is None:
            source_only.append(item)
        else:
            leftovers.remove(candidate)
            pairs.append((candidate, item))

    pairs.sort(key=lambda p: p[1].name)
    return pairs, source_only, leftovers


def _diff_named(
    table: str,
    kind: ObjectKind,
    target_items: list[_Named],
    source_items: list[_Named],
    signature: Callable[[_Named], Hashable],
    changes_of: Callable[[_Named, _Named], list[str]],
) -> list[DiffEntry]:
    pairs, source_only, target_only = _match(target_items, source_items, signature)
    entries: list[DiffEntry] = []
    for before, after in pairs:
        changes = changes_of(before, after)
        if changes:
            entries.append(
                DiffEntry(
                    type=DiffType.MODIFIED,
                    object_kind=kind,
                    path=f"{table}.{after.name}",
                    table=table,
                    before=before,
                    after=after,
                    changes=changes,
                )
            )
    for item in source_only:
        entries.append(
            DiffEntry(
                type=DiffType.ADDED,
                object_kind=kind,
                path=f"{table}.{item.name}",
                table=table,
                after=item,
            )
        )
    for item in target_only:
        entries.append(
            DiffEntry(
                type=DiffType.REMOVED,
                object_kind=kind,
                path=f"{table}.{item.name}",
                table=table,
                before=item,
            )
        )
    return entries


def diff_indexes(target: Table, source: Table) -> list[DiffEntry]:
    """Diff non-primary indexes.  Primary keys are covered by column diffs."""
    return _diff_named(
        source.name,
        ObjectKind.INDEX,
        [i for i in target.indexes if not i.is_primary],
        [i for i in source.indexes if not i.is_primary],
        _index_signature,
        _index_changes,
    )


def diff_foreign_keys(target: Table, source: Table) -> list[DiffEntry]:
    return _diff_named(
        source.name,
        ObjectKind.FOREIGN_KEY,
        target.foreign_keys,
        source.foreign_keys,
        _fk_signature,
        _fk_changes,
    )


def diff_table(target: Table, source: Table) -> list[DiffEntry]:
    """All child entries for a table present on both sides."""
    return (
        diff_columns(target, source)
        + diff_indexes(target, source)
        + diff_foreign_keys(target, source)
    )


# ============================================================================
# Schema diff
# ============================================================================


def diff_schemas(source: Schema, target: Schema) -> SchemaDiff:
    """Compute the structural diff that turns ``target`` into ``source``.

    Args:
        source: Desired state.
        target: Current state.

    Returns:
        ``SchemaDiff`` with one entry per added/removed table and one
        ``modified`` entry per common table that has child differences.
        Tables are sorted by name.

    Examples:
        >>> from db_sync.schema.models import Column, Schema, Table
        >>> users = Table(name="users", columns=[Column(name="id", data_type="integer")])
        >>> a = Schema(engine="postgres", tables=[users])
        >>> diff_schemas(a, a).is_empty
        True
    """
    source_tables = {t.name: t for t in source.tables}
    target_tables = {t.name: t for t in target.tables}
    entries: list[DiffEntry] = []

    for name in sorted(set(source_tables) | set(target_tables)):
        after = source_tables.get(name)
        before = target_tables.get(name)
        if before is None:
            entries.append(
                DiffEntry(
                    type=DiffType.ADDED,
                    object_kind=ObjectKind.TABLE,
                    path=name,
                    table=name,
                    after=after,
                )
            )
        elif after is None:
            entries.append(
                DiffEntry(
                    type=DiffType.REMOVED,
                    object_kind=ObjectKind.TABLE,
                    path=name,
                    table=name,
                    before=before,
                )
            )
        else:
            children = diff_table(before, after)
            if children:
                kinds = sorted({c.object_kind.value for c in children})
                entries.append(
                    DiffEntry(
                        type=DiffType.MODIFIED,
                        object_kind=ObjectKind.TABLE,
                        path=name,
                        table=name,
                        before=before,
                        after=after,
                        changes=kinds,
                        children=children,
                    )
                )

    return SchemaDiff(
        source_engine=source.engine,
        target_engine=target.engine,
        source_schema=source.schema_name,
        target_schema=target.schema_name,
        entries=entries,
    )
