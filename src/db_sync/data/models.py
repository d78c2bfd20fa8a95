"""Pydantic models for data comparison, reconciliation, and dump & restore."""

from typing import Any, Literal

from pydantic import BaseModel, Field


# ============================================================================
# Data diff
# ============================================================================


class TableDataDiff(BaseModel):
    """Row-count and key-presence comparison of one table.

    ``missing_in_target`` / ``missing_in_source`` are ``None`` when the
    table has no primary key: the key sets were not compared, so only the
    counts are meaningful and the table is never reported in sync.

    Example:
        >>> diff = TableDataDiff(table="users", source_count=2, target_count=2,
        ...                      missing_in_target=0, missing_in_source=0)
        >>> diff.in_sync
        True
    """

    table: str
    source_count: int = 0
    target_count: int = 0
    missing_in_target: int | None = None
    missing_in_source: int | None = None

    @property
    def keys_compared(self) -> bool:
        return self.missing_in_target is not None and self.missing_in_source is not None

    @property
    def in_sync(self) -> bool:
        if self.source_count != self.target_count:
            return False
        if not self.keys_compared:
            return False
        return self.missing_in_target == 0 and self.missing_in_source == 0


class TableSnapshot(BaseModel):
    """Row count and primary key set of one table on one side."""

    table: str
    count: int = 0
    primary_key: list[str] = Field(default_factory=list)
    keys: set[tuple] | None = None


class RowDiff(BaseModel):
    """Row-level differences of one table, keyed by primary key.

    Attributes:
        missing_in_target: Source rows whose key is absent from the target.
        missing_in_source: Target rows whose key is absent from the source.
        different: ``(source_row, target_row)`` pairs whose non-key values
            differ.
    """

    table: str
    primary_key: list[str] = Field(default_factory=list)
    missing_in_target: list[dict[str, Any]] = Field(default_factory=list)
    missing_in_source: list[dict[str, Any]] = Field(default_factory=list)
    different: list[tuple[dict[str, Any], dict[str, Any]]] = Field(default_factory=list)


# ============================================================================
# Sync
# ============================================================================


class SyncOptions(BaseModel):
    """What ``sync_table`` is allowed to change on the target.

    ``delete_extra`` is destructive and off by default.
    """

    insert_missing: bool = True
    update_different: bool = True
    delete_extra: bool = False
    batch_size: int = Field(default=500, ge=1)


class SyncResult(BaseModel):
    """Outcome of reconciling one table.

    Attributes:
        table: Table name.
        inserted: Rows inserted into the target.
        updated: Rows updated in the target.
        deleted: Rows deleted from the target.
        errors: Error messages; empty on success.
    """

    table: str
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class BatchSyncResult(BaseModel):
    """Ordered per-table results of a multi-table sync.

    ``errors`` holds failures that stopped the batch before any table was
    attempted, such as an unreadable source schema.
    """

    results: list[SyncResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def status(self) -> Literal["success", "partial", "failure"]:
        """``success`` if every table synced, ``failure`` if none did."""
        if self.errors:
            return "failure"
        if self.failed == 0:
            return "success"
        if self.succeeded == 0:
            return "failure"
        return "partial"

    @property
    def failed_tables(self) -> list[str]:
        return [r.table for r in self.results if not r.success]


class RowSyncResult(BaseModel):
    """Outcome of pushing an explicit list of rows."""

    table: str
    inserted: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


# ============================================================================
# Dump & restore
# ============================================================================


class DumpRestoreOptions(BaseModel):
    """Options for ``dump_and_restore``.

    Attributes:
        truncate_target: Delete existing target rows before loading.
        tables: Restrict to these tables (default: every table in the
            source schema).
        batch_size: Rows per insert batch.
        strict_ordering: Fail up front instead of breaking FK cycles.
    """

    truncate_target: bool = True
    tables: list[str] | None = None
    batch_size: int = Field(default=500, ge=1)
    strict_ordering: bool = False


class TableDumpResult(BaseModel):
    table: str
    rows: int = 0
    error: str | None = None


class DumpRestoreResult(BaseModel):
    """Outcome of a dump & restore.

    ``success`` is true only if no table recorded an error.  ``warnings``
    reports cycle breaking and FK-check handling; ``broken_dependencies``
    lists the ``(table, fk_name, referenced_table)`` edges ignored for
    ordering.
    """

    success: bool = False
    tables_processed: int = 0
    rows_copied: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    broken_dependencies: list[tuple[str, str, str]] = Field(default_factory=list)
    table_results: list[TableDumpResult] = Field(default_factory=list)
