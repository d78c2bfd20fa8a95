"""db-sync: Schema and data synchronization across database connections.

Introspects PostgreSQL, MySQL, MariaDB, and SQLite schemas into one
normalized model, diffs them, generates migration DDL, reconciles table
data by primary key, and checks whole instance groups against their source.

Usage:
    from db_sync import SyncService, load_sync_config
    from db_sync import SchemaIntrospector, diff_schemas, generate_migration
    from db_sync import sync_table, dump_and_restore, SyncOptions
    from db_sync import GroupSyncOrchestrator, ConnectionPool
"""

__version__ = "0.1.0"

# Connectors
from db_sync.connectors.base import DatabaseConnector
from db_sync.connectors.sql import SQLAlchemyConnector, create_connector

# Config
from db_sync.config.loader import load_sync_config, resolve_url
from db_sync.config.models import SyncConfig, SyncSettings

# Errors
from db_sync.errors import (
    ConnectionError,
    DependencyCycleError,
    ExecutionError,
    IntrospectionError,
    SyncEngineError,
    ValidationError,
)

# Dialects
from db_sync.dialects import EngineDialect, get_dialect

# Schema
from db_sync.schema.dependencies import resolve_order
from db_sync.schema.differ import diff_schemas
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.migration import apply_migration, generate_migration
from db_sync.schema.models import Schema, SchemaDiff

# Data
from db_sync.data.diff import compute_table_diffs
from db_sync.data.dump_restore import dump_and_restore
from db_sync.data.models import DumpRestoreOptions, SyncOptions
from db_sync.data.sync import sync_rows, sync_table, sync_tables

# History
from db_sync.history.models import ConnectionRecord, InstanceGroup, MigrationRecord
from db_sync.history.store import MetadataStore

# Orchestration
from db_sync.orchestrator import GroupSyncOrchestrator, SyncStatus
from db_sync.pool import ConnectionPool
from db_sync.service import SyncService

__all__ = [
    # Connectors
    "DatabaseConnector",
    "SQLAlchemyConnector",
    "create_connector",
    # Config
    "load_sync_config",
    "resolve_url",
    "SyncConfig",
    "SyncSettings",
    # Errors
    "SyncEngineError",
    "ConnectionError",
    "IntrospectionError",
    "ValidationError",
    "ExecutionError",
    "DependencyCycleError",
    # Dialects
    "EngineDialect",
    "get_dialect",
    # Schema
    "SchemaIntrospector",
    "diff_schemas",
    "generate_migration",
    "apply_migration",
    "resolve_order",
    "Schema",
    "SchemaDiff",
    # Data
    "compute_table_diffs",
    "sync_table",
    "sync_tables",
    "sync_rows",
    "dump_and_restore",
    "SyncOptions",
    "DumpRestoreOptions",
    # History
    "MetadataStore",
    "ConnectionRecord",
    "InstanceGroup",
    "MigrationRecord",
    # Orchestration
    "ConnectionPool",
    "GroupSyncOrchestrator",
    "SyncStatus",
    "SyncService",
]
