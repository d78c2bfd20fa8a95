"""Schema introspection, diffing, and migration generation.

Provides live database introspection (``SchemaIntrospector``), structural
diffs (``diff_schemas``), FK dependency ordering (``resolve_order``), and
dialect-specific migration SQL (``generate_migration``, ``apply_migration``).

Usage:
    from db_sync.schema import SchemaIntrospector, diff_schemas
    from db_sync.schema import generate_migration, apply_migration
"""

from db_sync.schema.dependencies import DependencyOrder, resolve_order
from db_sync.schema.differ import diff_schemas
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.migration import (
    MigrationApplyResult,
    apply_migration,
    generate_migration,
    is_comment,
)
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

__all__ = [
    "SchemaIntrospector",
    "diff_schemas",
    "resolve_order",
    "DependencyOrder",
    "generate_migration",
    "apply_migration",
    "is_comment",
    "MigrationApplyResult",
    "Column",
    "Index",
    "ForeignKey",
    "Table",
    "Schema",
    "DiffType",
    "ObjectKind",
    "DiffEntry",
    "SchemaDiff",
]
