"""Engine dialects: quoting, type mapping, and DDL/maintenance statements.

Each supported engine is one ``EngineDialect`` subclass.  Per-engine
differences live in class-level tables (type names, FK-check commands,
quote character); only statement shapes that genuinely differ (column
alters, index and foreign key drops) are overridden.  Adding an engine means
adding one subclass and registering it in ``DIALECTS``.

Usage:
    from db_sync.dialects import get_dialect

    dialect = get_dialect("postgres")
    dialect.quote("users")               # '"users"'
    dialect.normalize_type("int4")       # 'integer'
    dialect.qualify("users", "public")   # '"public"."users"'
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from db_sync.schema.models import Column, ForeignKey, Index, Table


# ============================================================================
# Shared type vocabulary
# ============================================================================

# Engine type name (lowercase, without parameters) -> canonical name.
COMMON_TYPE_ALIASES: dict[str, str] = {
    "int": "integer",
    "int4": "integer",
    "integer": "integer",
    "mediumint": "integer",
    "serial": "integer",
    "serial4": "integer",
    "int2": "smallint",
    "smallint": "smallint",
    "smallserial": "smallint",
    "int8": "bigint",
    "bigint": "bigint",
    "bigserial": "bigint",
    "serial8": "bigint",
    "bool": "boolean",
    "boolean": "boolean",
    "character varying": "varchar",
    "varchar": "varchar",
    "nvarchar": "varchar",
    "varchar2": "varchar",
    "character": "char",
    "char": "char",
    "bpchar": "char",
    "nchar": "char",
    "text": "text",
    "clob": "text",
    "float8": "double",
    "double precision": "double",
    "double": "double",
    "float4": "real",
    "real": "real",
    "float": "real",
    "numeric": "numeric",
    "decimal": "numeric",
    "timestamp without time zone": "timestamp",
    "timestamp": "timestamp",
    "datetime": "timestamp",
    "timestamp with time zone": "timestamptz",
    "timestamptz": "timestamptz",
    "time without time zone": "time",
    "time": "time",
    "time with time zone": "timetz",
    "timetz": "timetz",
    "date": "date",
    "bytea": "blob",
    "blob": "blob",
    "binary": "blob",
    "varbinary": "blob",
    "json": "json",
    "jsonb": "jsonb",
    "uuid": "uuid",
}

# Canonical types whose parameters (length, precision) are significant.
PARAMETERIZED_TYPES = frozenset({"varchar", "char", "numeric", "bit"})

_TYPE_PATTERN = re.compile(
    r"^\s*(?P<base>[a-zA-Z_][\w ]*)\s*(?:\((?P<params>[^)]*)\))?\s*(?P<suffix>[\w ]*)\s*$"
)


def split_type(type_string: str) -> tuple[str, str | None, str]:
    """Split ``"numeric(10, 2) unsigned"`` into ``("numeric", "10,2", "unsigned")``.

    Returns the lowercased base name, the parameter list with whitespace
    removed (or ``None``), and any trailing modifier words.
    """
    match = _TYPE_PATTERN.match(type_string)
    if not match:
        return type_string.strip().lower(), None, ""
    params = match.group("params")
    if params is not None:
        params = re.sub(r"\s+", "", params)
    base = match.group("base").strip().lower()
    suffix = (match.group("suffix") or "").strip().lower()
    # "int unsigned zerofill" has no parameter list to separate the modifiers
    for word in ("zerofill", "unsigned"):
        if base.endswith(" " + word):
            base = base[: -len(word) - 1].strip()
            suffix = f"{word} {suffix}".strip()
    return base, params, suffix


# ============================================================================
# Base dialect
# ============================================================================


class EngineDialect:
    """SQL rendering rules for one database engine.

    Class attributes are the per-engine tables; instances are stateless and
    shared through ``get_dialect()``.
    """

    name: str = ""
    family: str = ""
    quote_char: str = '"'
    default_schema: str | None = "public"
    qualify_tables: bool = True
    supports_alter_foreign_keys: bool = True
    # Engine-specific aliases checked before COMMON_TYPE_ALIASES, keyed by the
    # full lowercase type string (parameters included).
    type_aliases: dict[str, str] = {}
    # Canonical base name -> DDL type name on this engine.
    type_names: dict[str, str] = {}
    # Canonical base name -> parameters to use when none are known.
    default_type_params: dict[str, str] = {}
    keep_type_params: bool = True
    # Whether trailing modifiers such as "unsigned" are valid DDL here.
    supports_type_modifiers: bool = False
    delete_template: str = "DELETE FROM {table}"
    count_template: str = "SELECT COUNT(*) AS count FROM {table}"
    version_query: str = "SELECT version() AS version"
    disable_fk_checks: tuple[str, ...] = ()
    enable_fk_checks: tuple[str, ...] = ()
    system_schemas: frozenset[str] = frozenset()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def qualify(self, table: str, schema: str | None = None) -> str:
        """Return a quoted, optionally schema-qualified table reference."""
        if schema and self.qualify_tables:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)

    def quote_columns(self, columns: list[str]) -> str:
        return ", ".join(self.quote(c) for c in columns)

    # ------------------------------------------------------------------
    # Type mapping
    # ------------------------------------------------------------------

    def normalize_type(self, raw_type: str) -> str:
        """Map an engine type string to the shared vocabulary.

        Integer display widths are dropped, length and precision are kept
        for the types in ``PARAMETERIZED_TYPES``.

        Example:
            >>> get_dialect("postgres").normalize_type("character varying(255)")
            'varchar(255)'
            >>> get_dialect("mysql").normalize_type("INT(11)")
            'integer'
        """
        lowered = raw_type.strip().lower()
        if lowered in self.type_aliases:
            return self.type_aliases[lowered]

        is_array = lowered.endswith("[]")
        if is_array:
            lowered = lowered[:-2]
        elif lowered.startswith("_"):
            # PostgreSQL udt names for arrays (_int4, _text)
            lowered = lowered[1:]
            is_array = True

        base, params, suffix = split_type(lowered)
        if suffix in ("with time zone", "without time zone"):
            base = f"{base} {suffix}"
            suffix = ""
        canonical = COMMON_TYPE_ALIASES.get(base, base)
        if params and canonical in PARAMETERIZED_TYPES:
            canonical = f"{canonical}({params})"
        if suffix:
            canonical = f"{canonical} {suffix}"
        if is_array:
            canonical = f"{canonical}[]"
        return canonical

    def render_type(self, column: Column, source_engine: str | None = None) -> str:
        """Return the DDL type for ``column`` on this engine.

        Columns introspected from an engine of the same family keep their
        original type string; anything else is translated from the
        normalized ``data_type`` through ``type_names``.
        """
        if source_engine and get_dialect(source_engine).family == self.family and column.raw_type:
            return column.raw_type
        return self.map_canonical_type(column.data_type)

    def map_canonical_type(self, data_type: str) -> str:
        is_array = data_type.endswith("[]")
        if is_array:
            data_type = data_type[:-2]
        base, params, suffix = split_type(data_type)
        name = self.type_names.get(base, base)
        if is_array:
            return self.array_type(name)
        if params is None:
            params = self.default_type_params.get(base)
        if params and self.keep_type_params and "(" not in name:
            name = f"{name}({params})"
        if suffix and self.supports_type_modifiers:
            name = f"{name} {suffix}"
        return name

    def array_type(self, element_type: str) -> str:
        return self.type_names.get("json", "json")

    def normalize_default(self, default: str | None) -> str | None:
        """Normalize a catalog default expression for diffing and DDL."""
        if default is None:
            return None
        default = default.strip()
        return default or None

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def column_definition(self, column: Column, source_engine: str | None = None) -> str:
        parts = [self.quote(column.name), self.render_type(column, source_engine)]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default_value is not None:
            parts.append(f"DEFAULT {column.default_value}")
        return " ".join(parts)

    def create_table(
        self,
        table: Table,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> str:
        lines = [f"  {self.column_definition(c, source_engine)}" for c in table.columns]
        if table.primary_key:
            lines.append(f"  PRIMARY KEY ({self.quote_columns(table.primary_key)})")
        if not self.supports_alter_foreign_keys:
            for fk in table.foreign_keys:
                lines.append(f"  {self._foreign_key_clause(fk, schema)}")
        body = ",\n".join(lines)
        return f"CREATE TABLE {self.qualify(table.name, schema)} (\n{body}\n);"

    def drop_table(self, table: str, schema: str | None = None) -> str:
        return f"DROP TABLE IF EXISTS {self.qualify(table, schema)};"

    def add_column(
        self,
        table: str,
        column: Column,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> str:
        definition = self.column_definition(column, source_engine)
        return f"ALTER TABLE {self.qualify(table, schema)} ADD COLUMN {definition};"

    def drop_column(self, table: str, column: str, schema: str | None = None) -> str:
        return f"ALTER TABLE {self.qualify(table, schema)} DROP COLUMN {self.quote(column)};"

    def alter_column(
        self,
        table: str,
        before: Column,
        after: Column,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> list[str]:
        raise NotImplementedError

    def create_index(self, table: str, index: Index, schema: str | None = None) -> str:
        unique = "UNIQUE " if index.is_unique else ""
        return (
            f"CREATE {unique}INDEX {self.quote(index.name)} "
            f"ON {self.qualify(table, schema)} ({self.quote_columns(index.columns)});"
        )

    def drop_index(self, table: str, index: Index, schema: str | None = None) -> str:
        return f"DROP INDEX IF EXISTS {self.qualify(index.name, schema)};"

    def add_foreign_key(self, table: str, fk: ForeignKey, schema: str | None = None) -> str:
        return (
            f"ALTER TABLE {self.qualify(table, schema)} ADD "
            f"{self._foreign_key_clause(fk, schema)};"
        )

    def drop_foreign_key(self, table: str, fk: ForeignKey, schema: str | None = None) -> str:
        return (
            f"ALTER TABLE {self.qualify(table, schema)} "
            f"DROP CONSTRAINT {self.quote(fk.name)};"
        )

    def _foreign_key_clause(self, fk: ForeignKey, schema: str | None) -> str:
        clause = (
            f"CONSTRAINT {self.quote(fk.name)} FOREIGN KEY ({self.quote_columns(fk.columns)}) "
            f"REFERENCES {self.qualify(fk.referenced_table, schema)} "
            f"({self.quote_columns(fk.referenced_columns)})"
        )
        if fk.on_delete:
            clause += f" ON DELETE {fk.on_delete}"
        if fk.on_update:
            clause += f" ON UPDATE {fk.on_update}"
        return clause

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def count_rows(self, table: str, schema: str | None = None) -> str:
        return self.count_template.format(table=self.qualify(table, schema))

    def delete_all(self, table: str, schema: str | None = None) -> str:
        return self.delete_template.format(table=self.qualify(table, schema))

    def select_all(
        self,
        table: str,
        schema: str | None = None,
        order_by: list[str] | None = None,
        columns: list[str] | None = None,
    ) -> str:
        selected = self.quote_columns(columns) if columns else "*"
        sql = f"SELECT {selected} FROM {self.qualify(table, schema)}"
        if order_by:
            sql += f" ORDER BY {self.quote_columns(order_by)}"
        return sql

    def insert_row(self, table: str, columns: list[str], schema: str | None = None) -> str:
        """INSERT with SQLAlchemy named parameters ``:c_0, :c_1, ...``."""
        placeholders = ", ".join(f":c_{i}" for i in range(len(columns)))
        return (
            f"INSERT INTO {self.qualify(table, schema)} ({self.quote_columns(columns)}) "
            f"VALUES ({placeholders})"
        )

    def update_row(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        schema: str | None = None,
    ) -> str:
        """UPDATE by key with named parameters ``:s_N`` (SET) and ``:k_N`` (WHERE)."""
        set_clause = ", ".join(f"{self.quote(c)} = :s_{i}" for i, c in enumerate(columns))
        where_clause = " AND ".join(
            f"{self.quote(c)} = :k_{i}" for i, c in enumerate(key_columns)
        )
        return f"UPDATE {self.qualify(table, schema)} SET {set_clause} WHERE {where_clause}"

    def row_exists(self, table: str, key_columns: list[str], schema: str | None = None) -> str:
        where_clause = " AND ".join(
            f"{self.quote(c)} = :k_{i}" for i, c in enumerate(key_columns)
        )
        return f"SELECT 1 AS present FROM {self.qualify(table, schema)} WHERE {where_clause} LIMIT 1"

    def delete_row(self, table: str, key_columns: list[str], schema: str | None = None) -> str:
        where_clause = " AND ".join(
            f"{self.quote(c)} = :k_{i}" for i, c in enumerate(key_columns)
        )
        return f"DELETE FROM {self.qualify(table, schema)} WHERE {where_clause}"

    def resolve_schema(self, schema: str | None, database: str | None = None) -> str | None:
        """Schema name to use when the caller did not supply one."""
        return schema or self.default_schema


# ============================================================================
# Engine variants
# ============================================================================


class PostgresDialect(EngineDialect):
    name = "postgres"
    family = "postgres"
    default_schema = "public"
    type_names = {
        "double": "double precision",
        "blob": "bytea",
        "tinyint": "smallint",
        "mediumtext": "text",
        "longtext": "text",
        "tinytext": "text",
    }
    disable_fk_checks = ("SET session_replication_role = replica",)
    enable_fk_checks = ("SET session_replication_role = DEFAULT",)
    system_schemas = frozenset({"pg_catalog", "information_schema", "pg_toast"})

    def array_type(self, element_type: str) -> str:
        return f"{element_type}[]"

    def normalize_default(self, default: str | None) -> str | None:
        default = super().normalize_default(default)
        if default is None or default.upper() == "NULL":
            return None
        # Sequence-backed defaults describe identity, not data.
        if default.startswith("nextval("):
            return None
        # 'abc'::character varying -> 'abc'
        return re.sub(r"::[a-z_ ]+(\(\d+(,\s*\d+)?\))?(\[\])?", "", default, flags=re.I)

    def alter_column(
        self,
        table: str,
        before: Column,
        after: Column,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> list[str]:
        ref = self.qualify(table, schema)
        col = self.quote(after.name)
        statements: list[str] = []
        if before.data_type.lower() != after.data_type.lower():
            new_type = self.render_type(after, source_engine)
            statements.append(
                f"ALTER TABLE {ref} ALTER COLUMN {col} TYPE {new_type} USING {col}::{new_type};"
            )
        if before.nullable != after.nullable:
            action = "DROP NOT NULL" if after.nullable else "SET NOT NULL"
            statements.append(f"ALTER TABLE {ref} ALTER COLUMN {col} {action};")
        if before.default_value != after.default_value:
            if after.default_value is None:
                statements.append(f"ALTER TABLE {ref} ALTER COLUMN {col} DROP DEFAULT;")
            else:
                statements.append(
                    f"ALTER TABLE {ref} ALTER COLUMN {col} SET DEFAULT {after.default_value};"
                )
        if before.is_primary_key != after.is_primary_key:
            statements.append(
                f"-- Primary key change on {ref}.{col} must be applied manually"
            )
        return statements


class MySQLDialect(EngineDialect):
    name = "mysql"
    family = "mysql"
    quote_char = "`"
    default_schema = None
    type_aliases = {"tinyint(1)": "boolean", "bit(1)": "boolean"}
    type_names = {
        "timestamptz": "datetime",
        "timestamp": "datetime",
        "timetz": "time",
        "boolean": "tinyint(1)",
        "uuid": "char(36)",
        "jsonb": "json",
        "real": "float",
        "blob": "longblob",
    }
    default_type_params = {"varchar": "255"}
    supports_type_modifiers = True
    disable_fk_checks = ("SET FOREIGN_KEY_CHECKS = 0",)
    enable_fk_checks = ("SET FOREIGN_KEY_CHECKS = 1",)
    system_schemas = frozenset({"information_schema", "mysql", "performance_schema", "sys"})

    _UNQUOTED_DEFAULTS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NOW()"}

    def resolve_schema(self, schema: str | None, database: str | None = None) -> str | None:
        # A MySQL "schema" is the database.
        return schema or database

    def normalize_default(self, default: str | None) -> str | None:
        default = super().normalize_default(default)
        if default is None:
            return None
        upper = default.upper()
        if upper in self._UNQUOTED_DEFAULTS or upper.startswith("CURRENT_TIMESTAMP"):
            return default
        if default.startswith("'") or default.startswith("("):
            return default
        if re.fullmatch(r"-?\d+(\.\d+)?", default):
            return default
        escaped = default.replace("'", "''")
        return f"'{escaped}'"

    def alter_column(
        self,
        table: str,
        before: Column,
        after: Column,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> list[str]:
        ref = self.qualify(table, schema)
        statements: list[str] = []
        if (
            before.data_type.lower() != after.data_type.lower()
            or before.nullable != after.nullable
            or before.default_value != after.default_value
        ):
            statements.append(
                f"ALTER TABLE {ref} MODIFY COLUMN {self.column_definition(after, source_engine)};"
            )
        if before.is_primary_key != after.is_primary_key:
            statements.append(
                f"-- Primary key change on {ref}.{self.quote(after.name)} must be applied manually"
            )
        return statements

    def drop_index(self, table: str, index: Index, schema: str | None = None) -> str:
        return f"DROP INDEX {self.quote(index.name)} ON {self.qualify(table, schema)};"

    def drop_foreign_key(self, table: str, fk: ForeignKey, schema: str | None = None) -> str:
        return (
            f"ALTER TABLE {self.qualify(table, schema)} "
            f"DROP FOREIGN KEY {self.quote(fk.name)};"
        )


class MariaDBDialect(MySQLDialect):
    name = "mariadb"

    def normalize_default(self, default: str | None) -> str | None:
        # MariaDB reports string defaults already quoted and NULL as a literal.
        if default is not None and default.strip().upper() == "NULL":
            return None
        return super().normalize_default(default)


class SQLiteDialect(EngineDialect):
    name = "sqlite"
    family = "sqlite"
    version_query = "SELECT sqlite_version() AS version"
    default_schema = "main"
    qualify_tables = False
    supports_alter_foreign_keys = False
    keep_type_params = False
    type_names = {
        "integer": "INTEGER",
        "bigint": "INTEGER",
        "smallint": "INTEGER",
        "tinyint": "INTEGER",
        "boolean": "INTEGER",
        "varchar": "TEXT",
        "char": "TEXT",
        "text": "TEXT",
        "uuid": "TEXT",
        "json": "TEXT",
        "jsonb": "TEXT",
        "timestamp": "TEXT",
        "timestamptz": "TEXT",
        "date": "TEXT",
        "time": "TEXT",
        "double": "REAL",
        "real": "REAL",
        "numeric": "NUMERIC",
        "blob": "BLOB",
    }
    disable_fk_checks = ("PRAGMA foreign_keys = OFF",)
    enable_fk_checks = ("PRAGMA foreign_keys = ON",)

    def resolve_schema(self, schema: str | None, database: str | None = None) -> str | None:
        return "main"

    def normalize_default(self, default: str | None) -> str | None:
        default = super().normalize_default(default)
        if default is None or default.upper() == "NULL":
            return None
        return default

    def array_type(self, element_type: str) -> str:
        return "TEXT"

    def alter_column(
        self,
        table: str,
        before: Column,
        after: Column,
        schema: str | None = None,
        source_engine: str | None = None,
    ) -> list[str]:
        return [
            f"-- SQLite: cannot alter column {self.quote(after.name)} on "
            f"{self.quote(table)}; rebuild the table to apply this change"
        ]

    def drop_index(self, table: str, index: Index, schema: str | None = None) -> str:
        return f"DROP INDEX IF EXISTS {self.quote(index.name)};"

    def add_foreign_key(self, table: str, fk: ForeignKey, schema: str | None = None) -> str:
        return (
            f"-- SQLite: cannot add foreign key {self.quote(fk.name)} to "
            f"{self.quote(table)}; rebuild the table to apply this change"
        )

    def drop_foreign_key(self, table: str, fk: ForeignKey, schema: str | None = None) -> str:
        return (
            f"-- SQLite: cannot drop foreign key {self.quote(fk.name)} from "
            f"{self.quote(table)}; rebuild the table to apply this change"
        )


# ============================================================================
# Registry
# ============================================================================

DIALECTS: dict[str, EngineDialect] = {
    d.name: d
    for d in (PostgresDialect(), MySQLDialect(), MariaDBDialect(), SQLiteDialect())
}

# Alternate spellings accepted by get_dialect()
_ENGINE_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "sqlite3": "sqlite",
}


def get_dialect(engine: str) -> EngineDialect:
    """Look up the dialect for an engine name.

    Raises:
        ValueError: If the engine is not supported.
    """
    key = engine.lower()
    key = _ENGINE_ALIASES.get(key, key)
    if key not in DIALECTS:
        supported = ", ".join(sorted(DIALECTS))
        raise ValueError(f"Unsupported engine '{engine}'. Supported: {supported}")
    return DIALECTS[key]
