"""Pydantic models for normalized schemas and structural diffs.

This module contains schema-domain models:
- Introspection models: Column, Index, ForeignKey, Table, Schema
- Diff models: DiffType, ObjectKind, DiffEntry, SchemaDiff

Data comparison models (TableDataDiff, SyncResult) live in
db_sync.data.models.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Schema Introspection Models
# ============================================================================


class Column(BaseModel):
    """Schema for a table column.

    ``data_type`` is the normalized name used for diffing; ``raw_type`` is the
    type string exactly as the engine reported it, used when generating DDL
    for an engine of the same family.

    Example:
        >>> col = Column(name="id", data_type="integer")
        >>> col.nullable
        True
    """

    name: str
    data_type: str
    raw_type: str = ""
    nullable: bool = True
    is_primary_key: bool = False
    is_unique: bool = False
    default_value: str | None = None


class Index(BaseModel):
    """Schema for a table index."""

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    type: str = "btree"


class ForeignKey(BaseModel):
    """Schema for a foreign key constraint.

    Example:
        >>> fk = ForeignKey(
        ...     name="fk_orders_customer",
        ...     columns=["customer_id"],
        ...     referenced_table="customers",
        ...     referenced_columns=["id"],
        ... )
        >>> fk.on_delete is None
        True
    """

    name: str
    columns: list[str] = Field(default_factory=list)
    referenced_schema: str | None = None
    referenced_table: str
    referenced_columns: list[str] = Field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None

    @model_validator(mode="after")
    def _check_column_counts(self) -> ForeignKey:
        if len(self.columns) != len(self.referenced_columns):
            raise ValueError(
                f"Foreign key '{self.name}' has {len(self.columns)} column(s) "
                f"but {len(self.referenced_columns)} referenced column(s)"
            )
        return self


class Table(BaseModel):
    """Schema for a database table."""

    name: str
    columns: list[Column] = Field(default_factory=list)
    indexes: list[Index] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list)

    @property
    def primary_key(self) -> list[str]:
        """Primary key column names in column order."""
        return [c.name for c in self.columns if c.is_primary_key]

    def get_column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class Schema(BaseModel):
    """A normalized snapshot of one database schema.

    Example:
        >>> schema = Schema(engine="postgres", schema_name="public")
        >>> schema.table_names
        []
    """

    engine: str
    schema_name: str | None = None
    tables: list[Table] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_tables(self) -> Schema:
        seen: set[str] = set()
        for table in self.tables:
            if table.name in seen:
                raise ValueError(f"Duplicate table name in schema snapshot: {table.name}")
            seen.add(table.name)
        return self

    @property
    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]

    def get_table(self, name: str) -> Table | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None


# ============================================================================
# Diff Models
# ============================================================================


class DiffType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class ObjectKind(str, Enum):
    TABLE = "table"
    COLUMN = "column"
    INDEX = "index"
    FOREIGN_KEY = "foreign_key"


SchemaObject = Table | Column | Index | ForeignKey


class DiffEntry(BaseModel):
    """One unit of structural difference.

    ``before`` is the object as it exists in the target, ``after`` as it
    exists in the source (the desired state).  An ``added`` entry has only
    ``after``; a ``removed`` entry has only ``before``.  A ``modified`` table
    carries its column, index, and foreign key entries in ``children``.

    Attributes:
        type: added, removed, or modified.
        object_kind: table, column, index, or foreign_key.
        path: Dotted path, e.g. ``"users"`` or ``"users.email"``.
        table: Owning table name.
        changes: Attribute names that differ (``modified`` only).
    """

    type: DiffType
    object_kind: ObjectKind
    path: str
    table: str
    before: SchemaObject | None = None
    after: SchemaObject | None = None
    changes: list[str] = Field(default_factory=list)
    children: list[DiffEntry] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return self.path.rsplit(".", 1)[-1]

    def describe(self) -> str:
        """One-line human-readable description."""
        text = f"{self.object_kind.value} {self.type.value}: {self.path}"
        if self.changes:
            text += f" ({', '.join(self.changes)})"
        return text


class SchemaDiff(BaseModel):
    """Ordered structural diff between a source and a target schema.

    Example:
        >>> diff = SchemaDiff(source_engine="postgres", target_engine="postgres")
        >>> diff.is_empty
        True
    """

    source_engine: str
    target_engine: str
    source_schema: str | None = None
    target_schema: str | None = None
    entries: list[DiffEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def flatten(self) -> Iterator[DiffEntry]:
        """Yield every entry depth-first, parents before their children."""
        stack = list(reversed(self.entries))
        while stack:
            entry = stack.pop()
            yield entry
            stack.extend(reversed(entry.children))

    def summary(self) -> dict[str, int]:
        """Count entries by ``"<kind>_<type>"``, e.g. ``{"column_added": 2}``."""
        counts: Counter[str] = Counter(
            f"{e.object_kind.value}_{e.type.value}" for e in self.flatten()
        )
        return dict(counts)

    def format_report(self) -> str:
        """Format the diff as a human-readable report."""
        if self.is_empty:
            return "Schemas match"
        lines = [f"Schema differences ({len(self.entries)} table(s)):"]
        for entry in self.entries:
            lines.append(f"  - {entry.describe()}")
            for child in entry.children:
                lines.append(f"      - {child.describe()}")
        return "\n".join(lines)
