"""Table data comparison, reconciliation, and dump & restore.

Usage:
    from db_sync.data import compute_table_diffs, sync_table, dump_and_restore
    from db_sync.data import SyncOptions, DumpRestoreOptions
"""

from db_sync.data.diff import (
    TableDataDiffCache,
    collect_snapshots,
    compare_snapshot_sets,
    compare_snapshots,
    compute_row_diff,
    compute_table_diffs,
)
from db_sync.data.dump_restore import dump_and_restore
from db_sync.data.models import (
    BatchSyncResult,
    DumpRestoreOptions,
    DumpRestoreResult,
    RowDiff,
    RowSyncResult,
    SyncOptions,
    SyncResult,
    TableDataDiff,
    TableDumpResult,
    TableSnapshot,
)
from db_sync.data.sync import reconcile_table, sync_rows, sync_table, sync_tables

__all__ = [
    "compute_table_diffs",
    "compute_row_diff",
    "collect_snapshots",
    "compare_snapshots",
    "compare_snapshot_sets",
    "TableDataDiffCache",
    "sync_table",
    "sync_tables",
    "sync_rows",
    "reconcile_table",
    "dump_and_restore",
    "TableDataDiff",
    "TableSnapshot",
    "RowDiff",
    "SyncOptions",
    "SyncResult",
    "BatchSyncResult",
    "RowSyncResult",
    "DumpRestoreOptions",
    "DumpRestoreResult",
    "TableDumpResult",
]
