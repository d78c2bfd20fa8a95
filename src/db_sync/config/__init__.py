"""Configuration management: TOML loading and config models.

Usage:
    >>> from db_sync.config import load_sync_config, SyncConfig
"""

from db_sync.config.loader import load_sync_config, resolve_url
from db_sync.config.models import ConnectionProfile, GroupProfile, SyncConfig, SyncSettings

__all__ = [
    "load_sync_config",
    "resolve_url",
    "SyncConfig",
    "SyncSettings",
    "ConnectionProfile",
    "GroupProfile",
]
