"""Tests for dump & restore ordering, FK handling, and isolation."""

import pytest

from db_sync.data.diff import fetch_rows
from db_sync.data.dump_restore import dump_and_restore
from db_sync.data.models import DumpRestoreOptions
from db_sync.schema.models import Column, ForeignKey, Schema, Table


def _table(name: str, *refs: str) -> Table:
    return Table(
        name=name,
        columns=[Column(name="id", data_type="integer", is_primary_key=True)],
        foreign_keys=[
            ForeignKey(name=f"fk_{name}_{ref}", columns=[f"{ref}_id"],
                       referenced_table=ref, referenced_columns=["id"])
            for ref in refs
        ],
    )


def _source_rows(*tables: str) -> dict:
    return {f'FROM "public"."{t}"': [{"id": 1}, {"id": 2}] for t in tables}


def _statement_tables(statements: list[str], prefix: str) -> list[str]:
    return [s.split('"public".')[1].split()[0].strip('"') for s in statements if s.startswith(prefix)]


# ============================================================================
# Ordering
# ============================================================================


class TestDumpRestoreOrdering:
    """Verify truncate and load order against a recording connector."""

    @pytest.mark.asyncio
    async def test_children_truncated_first_parents_loaded_first(self, make_connector) -> None:
        """DELETE runs children first; INSERT runs parents first."""
        schema = Schema(engine="postgres", schema_name="public", tables=[
            _table("order_items", "orders"), _table("orders", "customers"), _table("customers"),
        ])
        source = make_connector(responses=_source_rows("customers", "orders", "order_items"))
        target = make_connector()

        result = await dump_and_restore(source, target, schema)

        assert result.success
        assert _statement_tables(target.executed, "DELETE FROM") == [
            "order_items", "orders", "customers",
        ]
        assert _statement_tables(target.executed, "INSERT INTO") == [
            "customers", "orders", "order_items",
        ]
        assert result.rows_copied == 6
        assert result.tables_processed == 3
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_no_truncate(self, make_connector) -> None:
        """truncate_target=False skips the DELETE phase."""
        schema = Schema(engine="postgres", schema_name="public", tables=[_table("a")])
        target = make_connector()
        await dump_and_restore(
            make_connector(responses=_source_rows("a")), target, schema,
            DumpRestoreOptions(truncate_target=False),
        )
        assert not any(s.startswith("DELETE") for s in target.executed)

    @pytest.mark.asyncio
    async def test_batches(self, make_connector) -> None:
        """Rows are inserted in batch_size chunks."""
        schema = Schema(engine="postgres", schema_name="public", tables=[_table("a")])
        target = make_connector()
        await dump_and_restore(
            make_connector(responses=_source_rows("a")), target, schema,
            DumpRestoreOptions(batch_size=1, truncate_target=False),
        )
        assert [len(p) for kind, _, p in target.calls if kind == "execute"] == [1, 1]

    @pytest.mark.asyncio
    async def test_table_selection(self, make_connector) -> None:
        """Only the selected tables are processed; unknown names are errors."""
        schema = Schema(engine="postgres", schema_name="public", tables=[_table("a"), _table("b")])
        target = make_connector()
        result = await dump_and_restore(
            make_connector(responses=_source_rows("a", "b")), target, schema,
            DumpRestoreOptions(tables=["b", "ghost"]),
        )
        assert [r.table for r in result.table_results] == ["ghost", "b"]
        assert result.table_results[0].error.startswith("ValidationError:")
        assert _statement_tables(target.executed, "INSERT INTO") == ["b"]
        assert not result.success


class TestDumpRestoreCycles:
    """Verify cycle handling."""

    def _schema(self) -> Schema:
        return Schema(engine="postgres", schema_name="public", tables=[_table("a", "b"), _table("b", "a")])

    @pytest.mark.asyncio
    async def test_fk_checks_disabled_around_cycle(self, make_connector) -> None:
        """FK enforcement is switched off for the load and restored after."""
        target = make_connector()
        result = await dump_and_restore(make_connector(responses=_source_rows("a", "b")), target, self._schema())
        assert target.executed[0] == "SET session_replication_role = replica"
        assert target.executed[-1] == "SET session_replication_role = DEFAULT"
        assert "Foreign key cycle broken at b.fk_b_a -> a" in result.warnings
        assert result.broken_dependencies == [("b", "fk_b_a", "a")]
        assert _statement_tables(target.executed, "INSERT INTO") == ["b", "a"]
        assert result.success

    @pytest.mark.asyncio
    async def test_strict_ordering_fails_up_front(self, make_connector) -> None:
        """strict_ordering reports the cycle and writes nothing."""
        target = make_connector()
        result = await dump_and_restore(
            make_connector(), target, self._schema(), DumpRestoreOptions(strict_ordering=True)
        )
        assert not result.success
        assert result.errors[0].startswith("DependencyCycleError:")
        assert result.broken_dependencies == [("b", "fk_b_a", "a")]
        assert target.executed == []

    @pytest.mark.asyncio
    async def test_self_reference_warns(self, make_connector) -> None:
        """Self-referencing tables also disable FK checks."""
        schema = Schema(engine="postgres", schema_name="public", tables=[_table("nodes", "nodes")])
        target = make_connector()
        result = await dump_and_restore(make_connector(responses=_source_rows("nodes")), target, schema)
        assert "Table nodes references itself" in result.warnings
        assert result.broken_dependencies == []
        assert target.executed[0] == "SET session_replication_role = replica"


class TestDumpRestoreIsolation:
    """Verify per-table failures do not stop the rest."""

    @pytest.mark.asyncio
    async def test_failed_table_isolated(self, make_connector) -> None:
        """A failing insert marks only that table."""
        schema = Schema(engine="postgres", schema_name="public", tables=[
            _table("order_items", "orders"), _table("orders", "customers"), _table("customers"),
        ])
        target = make_connector(fail_on=('INSERT INTO "public"."orders"',))
        result = await dump_and_restore(
            make_connector(responses=_source_rows("customers", "orders", "order_items")),
            target, schema,
        )
        errors_by_table = {r.table: r.error for r in result.table_results}
        assert errors_by_table["customers"] is None
        assert errors_by_table["orders"].startswith("ExecutionError:")
        assert errors_by_table["order_items"] is None
        assert result.tables_processed == 2
        assert not result.success

    @pytest.mark.asyncio
    async def test_failed_truncate_skips_load(self, make_connector) -> None:
        """A table whose DELETE failed is not loaded."""
        schema = Schema(engine="postgres", schema_name="public", tables=[_table("a"), _table("b")])
        target = make_connector(fail_on=('DELETE FROM "public"."a"',))
        result = await dump_and_restore(make_connector(responses=_source_rows("a", "b")), target, schema)
        assert result.table_results[0].error.startswith("Truncate failed:")
        assert _statement_tables(target.executed, "INSERT INTO") == ["b"]


class TestDumpRestoreSQLite:
    """Verify a full copy between SQLite databases."""

    DDL = (
        "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT)",
        "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER REFERENCES customers(id))",
    )

    @pytest.mark.asyncio
    async def test_copy_replaces_target_rows(self, sqlite_db) -> None:
        """Target rows are replaced by the source rows."""
        async with sqlite_db(
            "src.db", *self.DDL,
            "INSERT INTO customers VALUES (1, 'a'), (2, 'b')",
            "INSERT INTO orders VALUES (10, 1), (11, 2)",
        ) as source, sqlite_db(
            "tgt.db", *self.DDL, "INSERT INTO customers VALUES (99, 'stale')",
        ) as target:
            result = await dump_and_restore(source, target)
            customers = await fetch_rows(target, "customers", order_by=["id"])
            orders = await fetch_rows(target, "orders", order_by=["id"])

        assert result.success, result.errors
        assert result.rows_copied == 4
        assert [c["id"] for c in customers] == [1, 2]
        assert [o["id"] for o in orders] == [10, 11]
