"""Pydantic models for sync engine configuration (``sync.toml``)."""

from pydantic import BaseModel, Field

from db_sync.history.models import ConnectionRecord, InstanceGroup


# ============================================================================
# Configuration Models
# ============================================================================


class SyncSettings(BaseModel):
    """Engine-wide settings from the ``[sync]`` table."""

    max_concurrency: int = Field(default=4, ge=1)
    batch_size: int = Field(default=500, ge=1)
    row_count_cache_minutes: int = Field(default=30, ge=0)
    metadata_url: str = "sqlite+aiosqlite:///db-sync.sqlite"


class ConnectionProfile(BaseModel):
    """A ``[connections.<id>]`` entry."""

    url: str
    engine: str | None = None  # Inferred from the URL scheme when omitted
    name: str = ""
    description: str = ""
    database: str | None = None
    default_schema: str | None = None
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class GroupProfile(BaseModel):
    """A ``[groups.<id>]`` entry."""

    name: str = ""
    description: str = ""
    source: str | None = None
    members: list[str] = Field(default_factory=list)
    sync_schema: bool = True
    sync_data: bool = False
    sync_target_schema: str | None = None


class SyncConfig(BaseModel):
    """Complete configuration from ``sync.toml``."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    connections: dict[str, ConnectionProfile] = Field(default_factory=dict)
    groups: dict[str, GroupProfile] = Field(default_factory=dict)

    def connection_records(self) -> list[ConnectionRecord]:
        """Convert connection profiles into metadata records."""
        from db_sync.connectors.sql import normalize_url

        records = []
        for conn_id, profile in self.connections.items():
            engine = profile.engine or normalize_url(profile.url)[0]
            records.append(
                ConnectionRecord(
                    id=conn_id,
                    name=profile.name or conn_id,
                    engine=engine,
                    url=profile.url,
                    database=profile.database,
                    default_schema=profile.default_schema,
                    db_password=profile.db_password,
                    description=profile.description,
                )
            )
        return records

    def group_records(self) -> list[InstanceGroup]:
        """Convert group profiles into metadata records.

        The source connection is always a member, listed first.
        """
        records = []
        for group_id, profile in self.groups.items():
            members = list(profile.members)
            if profile.source and profile.source not in members:
                members.insert(0, profile.source)
            records.append(
                InstanceGroup(
                    id=group_id,
                    name=profile.name or group_id,
                    description=profile.description,
                    source_connection_id=profile.source,
                    sync_schema=profile.sync_schema,
                    sync_data=profile.sync_data,
                    sync_target_schema=profile.sync_target_schema,
                    connection_ids=members,
                )
            )
        return records
