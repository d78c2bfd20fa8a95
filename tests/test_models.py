"""Tests for schema, data, and metadata models."""

import pytest
from pydantic import ValidationError

from db_sync.data.models import BatchSyncResult, SyncOptions, SyncResult, TableDataDiff
from db_sync.history.models import MigrationRecord
from db_sync.schema.models import (
    Column,
    DiffEntry,
    DiffType,
    ForeignKey,
    ObjectKind,
    Schema,
    SchemaDiff,
    Table,
)


# ============================================================================
# Schema models
# ============================================================================


class TestSchemaModels:
    """Verify invariants of the normalized schema model."""

    def test_foreign_key_column_counts_must_match(self) -> None:
        """Mismatched column lists are rejected."""
        with pytest.raises(ValidationError, match="referenced column"):
            ForeignKey(name="fk", columns=["a", "b"], referenced_table="t",
                       referenced_columns=["id"])

    def test_duplicate_table_names_rejected(self) -> None:
        """A snapshot cannot contain the same table twice."""
        with pytest.raises(ValidationError, match="Duplicate table"):
            Schema(engine="postgres", tables=[Table(name="a"), Table(name="a")])

    def test_primary_key_in_column_order(self) -> None:
        """primary_key lists PK columns in column order."""
        table = Table(
            name="items",
            columns=[
                Column(name="line", data_type="integer", is_primary_key=True),
                Column(name="note", data_type="text"),
                Column(name="order_id", data_type="integer", is_primary_key=True),
            ],
        )
        assert table.primary_key == ["line", "order_id"]

    def test_lookup_helpers(self) -> None:
        """get_table and get_column return None for unknown names."""
        table = Table(name="users", columns=[Column(name="id", data_type="integer")])
        schema = Schema(engine="sqlite", tables=[table])
        assert schema.get_table("users") is table
        assert schema.get_table("nope") is None
        assert table.get_column("id").name == "id"
        assert table.get_column("nope") is None


class TestSchemaDiffModel:
    """Verify diff traversal and reporting."""

    def _diff(self) -> SchemaDiff:
        child = DiffEntry(
            type=DiffType.ADDED,
            object_kind=ObjectKind.COLUMN,
            path="users.name",
            table="users",
            after=Column(name="name", data_type="text"),
        )
        parent = DiffEntry(
            type=DiffType.MODIFIED,
            object_kind=ObjectKind.TABLE,
            path="users",
            table="users",
            changes=["column"],
            children=[child],
        )
        added = DiffEntry(
            type=DiffType.ADDED, object_kind=ObjectKind.TABLE, path="posts", table="posts",
            after=Table(name="posts"),
        )
        return SchemaDiff(source_engine="postgres", target_engine="postgres",
                          entries=[added, parent])

    def test_flatten_parents_first(self) -> None:
        """flatten yields each parent before its children."""
        assert [e.path for e in self._diff().flatten()] == ["posts", "users", "users.name"]

    def test_summary(self) -> None:
        """summary counts entries by kind and type."""
        assert self._diff().summary() == {
            "table_added": 1, "table_modified": 1, "column_added": 1,
        }

    def test_format_report(self) -> None:
        """The report lists tables and nested changes."""
        report = self._diff().format_report()
        assert report.startswith("Schema differences (2 table(s)):")
        assert "column added: users.name" in report

    def test_empty_report(self) -> None:
        """An empty diff reports a match."""
        assert SchemaDiff(source_engine="a", target_engine="b").format_report() == "Schemas match"

    def test_entry_name(self) -> None:
        """name is the last path segment."""
        assert self._diff().entries[1].children[0].name == "name"


# ============================================================================
# Data models
# ============================================================================


class TestTableDataDiff:
    """Verify in-sync classification."""

    def test_counts_differ(self) -> None:
        """Different counts are never in sync."""
        assert not TableDataDiff(table="t", source_count=1, target_count=2).in_sync

    def test_without_keys_never_in_sync(self) -> None:
        """Tables whose keys were not compared are not reported in sync."""
        diff = TableDataDiff(table="t", source_count=3, target_count=3)
        assert not diff.keys_compared
        assert not diff.in_sync

    def test_keys_match(self) -> None:
        """Equal counts and no missing keys are in sync."""
        diff = TableDataDiff(table="t", source_count=3, target_count=3,
                             missing_in_target=0, missing_in_source=0)
        assert diff.in_sync

    def test_same_count_different_keys(self) -> None:
        """Equal counts with missing keys are out of sync."""
        diff = TableDataDiff(table="t", source_count=2, target_count=2,
                             missing_in_target=1, missing_in_source=1)
        assert not diff.in_sync


class TestSyncResults:
    """Verify batch result aggregation."""

    def test_status(self) -> None:
        """success, partial, and failure follow the per-table results."""
        ok = SyncResult(table="a")
        bad = SyncResult(table="b", errors=["Insert failed: x"])
        assert BatchSyncResult(results=[ok]).status == "success"
        assert BatchSyncResult(results=[ok, bad]).status == "partial"
        assert BatchSyncResult(results=[bad]).status == "failure"
        assert BatchSyncResult(results=[ok, bad]).failed_tables == ["b"]

    def test_batch_errors_fail(self) -> None:
        """A batch stopped before any table is a failure."""
        batch = BatchSyncResult(errors=["IntrospectionError: Schema 'x' does not exist"])
        assert batch.status == "failure"
        assert batch.failed_tables == []

    def test_options_defaults(self) -> None:
        """Deletes are off by default and batch size must be positive."""
        options = SyncOptions()
        assert options.insert_missing and options.update_different
        assert not options.delete_extra
        with pytest.raises(ValidationError):
            SyncOptions(batch_size=0)


class TestMigrationRecord:
    """Verify migration record defaults."""

    def test_generated_id_and_timestamp(self) -> None:
        """Each record gets a unique id and an aware timestamp."""
        a = MigrationRecord(source_connection_id="s", target_connection_id="t")
        b = MigrationRecord(source_connection_id="s", target_connection_id="t")
        assert a.id != b.id
        assert a.applied_at.tzinfo is not None
        assert a.success and a.group_name is None
