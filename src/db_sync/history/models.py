"""Pydantic models for metadata records: connections, instance groups, migrations."""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class ConnectionRecord(BaseModel):
    """A stored database connection.

    Example:
        >>> conn = ConnectionRecord(id="c1", name="Local", engine="sqlite", url="sqlite:///a.db")
        >>> conn.default_schema is None
        True
    """

    id: str
    name: str
    engine: str
    url: str
    database: str | None = None
    default_schema: str | None = None
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    description: str = ""


class InstanceGroup(BaseModel):
    """A named set of connections sharing one designated source."""

    id: str
    name: str
    description: str = ""
    source_connection_id: str | None = None
    sync_schema: bool = True
    sync_data: bool = False
    sync_target_schema: str | None = None  # Overrides every member's default schema
    connection_ids: list[str] = Field(default_factory=list)


class MigrationRecord(BaseModel):
    """An applied or generated migration.

    ``group_id`` is a soft reference: any value is stored as given, and
    ``group_name`` is filled in at read time only if that group currently
    exists.  Connection names are resolved the same way.
    """

    id: str = Field(default_factory=_new_id)
    source_connection_id: str
    target_connection_id: str
    source_schema: str | None = None
    target_schema: str | None = None
    group_id: str | None = None
    description: str = ""
    sql_statements: list[str] = Field(default_factory=list)
    applied_at: datetime = Field(default_factory=_utcnow)
    success: bool = True
    error: str | None = None

    # Resolved at read time
    group_name: str | None = None
    source_connection_name: str | None = None
    target_connection_name: str | None = None
