"""Live schema introspection into the normalized schema model.

This module queries a database through a ``DatabaseConnector`` and builds a
``Schema``:
- Tables (base tables only, views excluded)
- Columns with normalized and raw types, nullability, defaults, PK/unique flags
- Indexes (name, ordered columns, uniqueness, primary flag, method)
- Foreign keys (ordered column pairs, referenced table, ON DELETE/UPDATE)

Catalog access is per engine: ``information_schema`` plus ``pg_catalog`` for
PostgreSQL, ``information_schema`` for MySQL/MariaDB, and ``PRAGMA`` calls
for SQLite.  Each engine's queries live in one ``*Catalog`` class registered
in ``CATALOGS``.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from db_sync import errors
from db_sync.connectors.base import DatabaseConnector
from db_sync.dialects import EngineDialect, get_dialect
from db_sync.schema.models import Column, ForeignKey, Index, Schema, Table

logger = logging.getLogger(__name__)

# pg_constraint action codes
_PG_FK_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}


def _split_list(value: Any) -> list[str]:
    """Accept a driver array or a GROUP_CONCAT string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [v for v in str(value).split(",") if v]


# ============================================================================
# Engine catalogs
# ============================================================================


class _Catalog:
    """Raw catalog queries for one engine.  Returns plain dicts."""

    def __init__(self, connector: DatabaseConnector, dialect: EngineDialect) -> None:
        self._connector = connector
        self._dialect = dialect

    async def _rows(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        result = await self._connector.query(sql, params)
        return result.rows

    async def schemas(self) -> list[str]:
        raise NotImplementedError

    async def schema_exists(self, schema: str) -> bool:
        return schema in await self.schemas()

    async def tables(self, schema: str) -> list[str]:
        raise NotImplementedError

    async def columns(self, schema: str, table: str) -> list[Column]:
        raise NotImplementedError

    async def indexes(self, schema: str, table: str) -> list[Index]:
        raise NotImplementedError

    async def foreign_keys(self, schema: str, table: str) -> list[ForeignKey]:
        raise NotImplementedError

    def _column(
        self,
        name: str,
        raw_type: str,
        nullable: bool,
        default: str | None,
        is_primary_key: bool,
        is_unique: bool,
    ) -> Column:
        return Column(
            name=name,
            data_type=self._dialect.normalize_type(raw_type),
            raw_type=raw_type,
            nullable=nullable,
            is_primary_key=is_primary_key,
            is_unique=is_unique,
            default_value=self._dialect.normalize_default(
                None if default is None else str(default)
            ),
        )


class PostgresCatalog(_Catalog):
    async def schemas(self) -> list[str]:
        rows = await self._rows(
            """
            SELECT schema_name
            FROM information_schema.schemata
            WHERE schema_name NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
              AND schema_name NOT LIKE 'pg_temp_%'
              AND schema_name NOT LIKE 'pg_toast_temp_%'
            ORDER BY schema_name
            """
        )
        return [r["schema_name"] for r in rows]

    async def tables(self, schema: str) -> list[str]:
        rows = await self._rows(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = :schema
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            {"schema": schema},
        )
        return [r["table_name"] for r in rows]

    async def columns(self, schema: str, table: str) -> list[Column]:
        rows = await self._rows(
            """
            SELECT
                c.column_name,
                c.data_type,
                c.udt_name,
                c.is_nullable,
                c.column_default,
                c.character_maximum_length,
                c.numeric_precision,
                c.numeric_scale,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                        AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                      AND tc.table_schema = c.table_schema
                      AND tc.table_name = c.table_name
                      AND kcu.column_name = c.column_name
                ) AS is_primary_key,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                        AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'UNIQUE'
                      AND tc.table_schema = c.table_schema
                      AND tc.table_name = c.table_name
                      AND kcu.column_name = c.column_name
                ) AS is_unique
            FROM information_schema.columns c
            WHERE c.table_schema = :schema
              AND c.table_name = :table
            ORDER BY c.ordinal_position
            """,
            {"schema": schema, "table": table},
        )
        columns = []
        for r in rows:
            columns.append(
                self._column(
                    name=r["column_name"],
                    raw_type=self._raw_type(r),
                    nullable=r["is_nullable"] == "YES",
                    default=r["column_default"],
                    is_primary_key=bool(r["is_primary_key"]),
                    is_unique=bool(r["is_unique"]),
                )
            )
        return columns

    @staticmethod
    def _raw_type(row: dict) -> str:
        """Rebuild a DDL type from information_schema fields."""
        data_type = row["data_type"]
        udt_name = row["udt_name"]
        if data_type == "ARRAY":
            return f"{udt_name.lstrip('_')}[]"
        if data_type == "USER-DEFINED":
            return udt_name
        if row["character_maximum_length"]:
            return f"{data_type}({row['character_maximum_length']})"
        if data_type == "numeric" and row["numeric_precision"] is not None:
            return f"numeric({row['numeric_precision']},{row['numeric_scale'] or 0})"
        return data_type

    async def indexes(self, schema: str, table: str) -> list[Index]:
        rows = await self._rows(
            """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique,
                ix.indisprimary AS is_primary,
                am.amname AS index_type
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_am am ON am.oid = i.relam
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = :schema
              AND t.relname = :table
            GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname
            ORDER BY i.relname
            """,
            {"schema": schema, "table": table},
        )
        return [
            Index(
                name=r["index_name"],
                columns=_split_list(r["columns"]),
                is_unique=bool(r["is_unique"]),
                is_primary=bool(r["is_primary"]),
                type=r["index_type"],
            )
            for r in rows
        ]

    async def foreign_keys(self, schema: str, table: str) -> list[ForeignKey]:
        rows = await self._rows(
            """
            SELECT
                con.conname AS constraint_name,
                ARRAY(
                    SELECT a.attname
                    FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
                    JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
                    ORDER BY k.ord
                ) AS columns,
                rn.nspname AS referenced_schema,
                rt.relname AS referenced_table,
                ARRAY(
                    SELECT a.attname
                    FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
                    JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
                    ORDER BY k.ord
                ) AS referenced_columns,
                con.confdeltype::text AS on_delete,
                con.confupdtype::text AS on_update
            FROM pg_constraint con
            JOIN pg_class t ON t.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_class rt ON rt.oid = con.confrelid
            JOIN pg_namespace rn ON rn.oid = rt.relnamespace
            WHERE con.contype = 'f'
              AND n.nspname = :schema
              AND t.relname = :table
            ORDER BY con.conname
            """,
            {"schema": schema, "table": table},
        )
        return [
            ForeignKey(
                name=r["constraint_name"],
                columns=_split_list(r["columns"]),
                referenced_schema=r["referenced_schema"],
                referenced_table=r["referenced_table"],
                referenced_columns=_split_list(r["referenced_columns"]),
                on_delete=_PG_FK_ACTIONS.get(r["on_delete"], r["on_delete"]),
                on_update=_PG_FK_ACTIONS.get(r["on_update"], r["on_update"]),
            )
            for r in rows
        ]


class MySQLCatalog(_Catalog):
    async def schemas(self) -> list[str]:
        rows = await self._rows(
            """
            SELECT SCHEMA_NAME AS schema_name
            FROM information_schema.SCHEMATA
            WHERE SCHEMA_NAME NOT IN ('information_schema', 'mysql', 'performance_schema', 'sys')
            ORDER BY SCHEMA_NAME
            """
        )
        schemas = [r["schema_name"] for r in rows]
        # Connected database first
        database = self._connector.database
        if database and database in schemas:
            schemas = [database] + [s for s in schemas if s != database]
        return schemas

    async def tables(self, schema: str) -> list[str]:
        rows = await self._rows(
            """
            SELECT TABLE_NAME AS table_name
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = :schema
              AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
            """,
            {"schema": schema},
        )
        return [r["table_name"] for r in rows]

    async def columns(self, schema: str, table: str) -> list[Column]:
        rows = await self._rows(
            """
            SELECT
                COLUMN_NAME AS column_name,
                COLUMN_TYPE AS column_type,
                IS_NULLABLE AS is_nullable,
                COLUMN_DEFAULT AS column_default,
                COLUMN_KEY AS column_key
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = :schema
              AND TABLE_NAME = :table
            ORDER BY ORDINAL_POSITION
            """,
            {"schema": schema, "table": table},
        )
        unique_rows = await self._rows(
            """
            SELECT COLUMN_NAME AS column_name
            FROM information_schema.STATISTICS
            WHERE TABLE_SCHEMA = :schema
              AND TABLE_NAME = :table
              AND NON_UNIQUE = 0
            """,
            {"schema": schema, "table": table},
        )
        unique_columns = {r["column_name"] for r in unique_rows}
        return [
            self._column(
                name=r["column_name"],
                raw_type=str(r["column_type"]),
                nullable=r["is_nullable"] == "YES",
                default=r["column_default"],
                is_primary_key=r["column_key"] == "PRI",
                is_unique=r["column_name"] in unique_columns,
            )
            for r in rows
        ]

    async def indexes(self, schema: str, table: str) -> list[Index]:
        rows = await self._rows(
            """
            SELECT
                INDEX_NAME AS index_name,
                GROUP_CONCAT(COLUMN_NAME ORDER BY SEQ_IN_INDEX) AS columns,
                MIN(NON_UNIQUE) AS non_unique,
                INDEX_TYPE AS index_type
            FROM information_schema.STATISTICS
            WHERE TABLE_SCHEMA = :schema
              AND TABLE_NAME = :table
            GROUP BY INDEX_NAME, INDEX_TYPE
            ORDER BY INDEX_NAME
            """,
            {"schema": schema, "table": table},
        )
        return [
            Index(
                name=r["index_name"],
                columns=_split_list(r["columns"]),
                is_unique=int(r["non_unique"]) == 0,
                is_primary=r["index_name"] == "PRIMARY",
                type=str(r["index_type"]).lower(),
            )
            for r in rows
        ]

    async def foreign_keys(self, schema: str, table: str) -> list[ForeignKey]:
        rows = await self._rows(
            """
            SELECT
                kcu.CONSTRAINT_NAME AS constraint_name,
                GROUP_CONCAT(kcu.COLUMN_NAME ORDER BY kcu.ORDINAL_POSITION) AS columns,
                kcu.REFERENCED_TABLE_SCHEMA AS referenced_schema,
                kcu.REFERENCED_TABLE_NAME AS referenced_table,
                GROUP_CONCAT(kcu.REFERENCED_COLUMN_NAME ORDER BY kcu.ORDINAL_POSITION)
                    AS referenced_columns,
                rc.DELETE_RULE AS on_delete,
                rc.UPDATE_RULE AS on_update
            FROM information_schema.KEY_COLUMN_USAGE kcu
            JOIN information_schema.REFERENTIAL_CONSTRAINTS rc
                ON rc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
                AND rc.CONSTRAINT_SCHEMA = kcu.TABLE_SCHEMA
            WHERE kcu.TABLE_SCHEMA = :schema
              AND kcu.TABLE_NAME = :table
              AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
            GROUP BY
                kcu.CONSTRAINT_NAME,
                kcu.REFERENCED_TABLE_SCHEMA,
                kcu.REFERENCED_TABLE_NAME,
                rc.DELETE_RULE,
                rc.UPDATE_RULE
            ORDER BY kcu.CONSTRAINT_NAME
            """,
            {"schema": schema, "table": table},
        )
        return [
            ForeignKey(
                name=r["constraint_name"],
                columns=_split_list(r["columns"]),
                referenced_schema=r["referenced_schema"],
                referenced_table=r["referenced_table"],
                referenced_columns=_split_list(r["referenced_columns"]),
                on_delete=r["on_delete"],
                on_update=r["on_update"],
            )
            for r in rows
        ]


class SQLiteCatalog(_Catalog):
    async def schemas(self) -> list[str]:
        return ["main"]

    async def tables(self, schema: str) -> list[str]:
        rows = await self._rows(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [r["name"] for r in rows]

    async def columns(self, schema: str, table: str) -> list[Column]:
        q = self._dialect.quote
        rows = await self._rows(f"PRAGMA table_info({q(table)})")
        unique_columns = {
            idx.columns[0]
            for idx in await self._index_entries(table)
            if idx.is_unique and not idx.is_primary and len(idx.columns) == 1
        }
        return [
            self._column(
                name=r["name"],
                raw_type=r["type"] or "TEXT",
                nullable=not r["notnull"],
                default=r["dflt_value"],
                is_primary_key=int(r["pk"]) > 0,
                is_unique=r["name"] in unique_columns,
            )
            for r in rows
        ]

    async def indexes(self, schema: str, table: str) -> list[Index]:
        indexes = []
        for idx in await self._index_entries(table):
            # sqlite_autoindex_* names are reserved; expose UNIQUE constraints
            # under a name a CREATE INDEX can reproduce.
            if idx.name.startswith("sqlite_autoindex_") and not idx.is_primary:
                idx = idx.model_copy(
                    update={"name": f"uq_{table}_" + "_".join(idx.columns)}
                )
            indexes.append(idx)
        indexes.sort(key=lambda i: i.name)
        return indexes

    async def _index_entries(self, table: str) -> list[Index]:
        q = self._dialect.quote
        index_rows = await self._rows(f"PRAGMA index_list({q(table)})")
        indexes = []
        for r in index_rows:
            info = await self._rows(f"PRAGMA index_info({q(r['name'])})")
            info.sort(key=lambda i: i["seqno"])
            indexes.append(
                Index(
                    name=r["name"],
                    columns=[i["name"] for i in info],
                    is_unique=bool(r["unique"]),
                    is_primary=r.get("origin") == "pk",
                    type="btree",
                )
            )
        indexes.sort(key=lambda i: i.name)
        return indexes

    async def foreign_keys(self, schema: str, table: str) -> list[ForeignKey]:
        q = self._dialect.quote
        rows = await self._rows(f"PRAGMA foreign_key_list({q(table)})")
        grouped: dict[int, list[dict]] = {}
        for r in rows:
            grouped.setdefault(int(r["id"]), []).append(r)

        fks = []
        for fk_id, parts in sorted(grouped.items()):
            parts.sort(key=lambda p: p["seq"])
            first = parts[0]
            fks.append(
                ForeignKey(
                    name=f"fk_{table}_{fk_id}",
                    columns=[p["from"] for p in parts],
                    referenced_schema="main",
                    referenced_table=first["table"],
                    # "to" is NULL when the reference targets the parent's primary key
                    referenced_columns=[p["to"] or p["from"] for p in parts],
                    on_delete=first["on_delete"],
                    on_update=first["on_update"],
                )
            )
        return fks


CATALOGS: dict[str, type[_Catalog]] = {
    "postgres": PostgresCatalog,
    "mysql": MySQLCatalog,
    "mariadb": MySQLCatalog,
    "sqlite": SQLiteCatalog,
}


# ============================================================================
# Introspector
# ============================================================================


class SchemaIntrospector:
    """Introspects a live database schema into the normalized model.

    Usage:
        introspector = SchemaIntrospector(connector)
        schema = await introspector.introspect("public")
        for table in schema.tables:
            print(table.name, table.primary_key)
    """

    # Tables to exclude from introspection (engine bookkeeping)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(self, connector: DatabaseConnector, engine: str | None = None) -> None:
        self._connector = connector
        self._dialect = get_dialect(engine or connector.engine)
        self._catalog = CATALOGS[self._dialect.name](connector, self._dialect)

    @property
    def dialect(self) -> EngineDialect:
        return self._dialect

    def resolve_schema_name(self, schema_name: str | None = None) -> str:
        """Pick the schema to read when the caller did not name one.

        MySQL/MariaDB fall back to the connection's database, SQLite is
        always ``main``, PostgreSQL defaults to ``public``.

        Raises:
            IntrospectionError: If no schema can be determined.
        """
        resolved = self._dialect.resolve_schema(schema_name, self._connector.database)
        if not resolved:
            raise errors.IntrospectionError(
                f"No schema given and the {self._dialect.name} connection has no database"
            )
        return resolved

    async def list_schemas(self) -> list[str]:
        """List user schemas (databases on MySQL/MariaDB)."""
        try:
            return await self._catalog.schemas()
        except errors.SyncEngineError as e:
            raise errors.IntrospectionError(f"Failed to list schemas: {e}") from e

    async def list_tables(self, schema_name: str | None = None) -> list[str]:
        """List base table names in a schema, sorted."""
        schema = self.resolve_schema_name(schema_name)
        try:
            tables = await self._catalog.tables(schema)
        except errors.SyncEngineError as e:
            raise errors.IntrospectionError(
                f"Failed to list tables in schema '{schema}': {e}"
            ) from e
        return [t for t in tables if t not in self.EXCLUDED_TABLES]

    async def introspect_table(self, table_name: str, schema_name: str | None = None) -> Table:
        """Read one table's columns, indexes, and foreign keys."""
        schema = self.resolve_schema_name(schema_name)
        try:
            return Table(
                name=table_name,
                columns=await self._catalog.columns(schema, table_name),
                indexes=await self._catalog.indexes(schema, table_name),
                foreign_keys=await self._catalog.foreign_keys(schema, table_name),
            )
        except (errors.SyncEngineError, PydanticValidationError) as e:
            raise errors.IntrospectionError(
                f"Failed to introspect table '{schema}.{table_name}': {e}"
            ) from e

    async def introspect(self, schema_name: str | None = None) -> Schema:
        """Introspect every base table of a schema.

        Args:
            schema_name: Schema to read.  See ``resolve_schema_name()`` for
                the default per engine.

        Returns:
            ``Schema`` with tables sorted by name.

        Raises:
            IntrospectionError: If the connection is unusable, the schema does
                not exist, or the catalog cannot be read.
        """
        schema = self.resolve_schema_name(schema_name)
        try:
            exists = await self._catalog.schema_exists(schema)
        except errors.SyncEngineError as e:
            raise errors.IntrospectionError(
                f"Failed to read catalog of {self._dialect.name} database: {e}"
            ) from e
        if not exists:
            raise errors.IntrospectionError(f"Schema '{schema}' does not exist")

        tables = [
            await self.introspect_table(name, schema)
            for name in await self.list_tables(schema)
        ]
        logger.info(
            "Introspected %d table(s) from %s schema %s",
            len(tables), self._dialect.name, schema,
        )
        try:
            return Schema(engine=self._dialect.name, schema_name=schema, tables=tables)
        except PydanticValidationError as e:
            raise errors.IntrospectionError(f"Invalid schema snapshot for '{schema}': {e}") from e
