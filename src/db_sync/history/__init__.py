"""Metadata records and the migration history store.

Usage:
    from db_sync.history import MetadataStore, MigrationRecord
"""

from db_sync.history.models import ConnectionRecord, InstanceGroup, MigrationRecord
from db_sync.history.store import MetadataStore

__all__ = [
    "MetadataStore",
    "ConnectionRecord",
    "InstanceGroup",
    "MigrationRecord",
]
