"""Metadata store: connection records, instance groups, migration history.

Backed by SQLAlchemy Core on an async engine (aiosqlite by default).  The
migration history is the only state the sync engine itself writes: records
are appended on generate/apply, never updated, and hard-deleted by id.

``group_id`` on a migration is a soft reference with no foreign key.  Group
and connection names are resolved at read time through LEFT JOINs, so a
renamed or deleted group shows up correctly in later reads.

Usage:
    store = MetadataStore("sqlite+aiosqlite:///db-sync.sqlite")
    await store.create_all()

    await store.save_connection(ConnectionRecord(...))
    record = await store.record_migration(MigrationRecord(...))
    history = await store.list_migrations(target_connection_id="staging")

    await store.close()
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from db_sync.connectors.sql import normalize_url
from db_sync.history.models import ConnectionRecord, InstanceGroup, MigrationRecord

logger = logging.getLogger(__name__)

metadata = MetaData()

connections_table = Table(
    "connections",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("engine", String(32), nullable=False),
    Column("url", Text, nullable=False),
    Column("database", String(255)),
    Column("default_schema", String(255)),
    Column("db_password", Text),
    Column("description", Text, nullable=False, default=""),
)

groups_table = Table(
    "database_groups",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("source_connection_id", String(64)),
    Column("sync_schema", Boolean, nullable=False, default=True),
    Column("sync_data", Boolean, nullable=False, default=False),
    Column("sync_target_schema", String(255)),
)

group_members_table = Table(
    "group_members",
    metadata,
    Column("group_id", String(64), primary_key=True),
    Column("connection_id", String(64), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)

migration_history_table = Table(
    "migration_history",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("source_connection_id", String(64), nullable=False),
    Column("target_connection_id", String(64), nullable=False, index=True),
    Column("source_schema", String(255)),
    Column("target_schema", String(255)),
    Column("group_id", String(64)),  # soft reference, no FK
    Column("description", Text, nullable=False, default=""),
    Column("sql_statements", JSON, nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False, index=True),
    Column("success", Boolean, nullable=False, default=True),
    Column("error", Text),
)

_CONNECTION_FIELDS = (
    "name", "engine", "url", "database", "default_schema", "db_password", "description",
)
_GROUP_FIELDS = (
    "name", "description", "source_connection_id", "sync_schema", "sync_data",
    "sync_target_schema",
)


class MetadataStore:
    """Async persistence for connections, groups, and migration history.

    Args:
        url: Database URL.  Plain ``sqlite://``/``postgresql://`` schemes are
            rewritten to their async drivers.
        engine: Pre-built async engine (takes precedence over ``url``).
    """

    def __init__(
        self,
        url: str = "sqlite+aiosqlite:///db-sync.sqlite",
        engine: AsyncEngine | None = None,
    ) -> None:
        if engine is None:
            _, async_url = normalize_url(url)
            engine = create_async_engine(async_url)
        self._engine = engine

    async def create_all(self) -> None:
        """Create any missing metadata tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def save_connection(self, record: ConnectionRecord) -> ConnectionRecord:
        """Insert or replace a connection record."""
        values = {f: getattr(record, f) for f in _CONNECTION_FIELDS}
        async with self._engine.begin() as conn:
            exists = await conn.scalar(
                select(connections_table.c.id).where(connections_table.c.id == record.id)
            )
            if exists:
                await conn.execute(
                    update(connections_table)
                    .where(connections_table.c.id == record.id)
                    .values(**values)
                )
            else:
                await conn.execute(insert(connections_table).values(id=record.id, **values))
        return record

    async def get_connection(self, connection_id: str) -> ConnectionRecord | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(
                    select(connections_table).where(connections_table.c.id == connection_id)
                )
            ).mappings().first()
        return ConnectionRecord(**row) if row else None

    async def list_connections(self) -> list[ConnectionRecord]:
        async with self._engine.connect() as conn:
            rows = (
                await conn.execute(select(connections_table).order_by(connections_table.c.name))
            ).mappings().all()
        return [ConnectionRecord(**row) for row in rows]

    async def delete_connection(self, connection_id: str) -> bool:
        """Delete a connection and its group memberships."""
        async with self._engine.begin() as conn:
            await conn.execute(
                delete(group_members_table).where(
                    group_members_table.c.connection_id == connection_id
                )
            )
            result = await conn.execute(
                delete(connections_table).where(connections_table.c.id == connection_id)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Instance groups
    # ------------------------------------------------------------------

    async def save_group(self, group: InstanceGroup) -> InstanceGroup:
        """Insert or replace a group and its member list (order preserved)."""
        values = {f: getattr(group, f) for f in _GROUP_FIELDS}
        async with self._engine.begin() as conn:
            exists = await conn.scalar(
                select(groups_table.c.id).where(groups_table.c.id == group.id)
            )
            if exists:
                await conn.execute(
                    update(groups_table).where(groups_table.c.id == group.id).values(**values)
                )
            else:
                await conn.execute(insert(groups_table).values(id=group.id, **values))
            await conn.execute(
                delete(group_members_table).where(group_members_table.c.group_id == group.id)
            )
            members = list(dict.fromkeys(group.connection_ids))
            if members:
                await conn.execute(
                    insert(group_members_table),
                    [
                        {"group_id": group.id, "connection_id": cid, "position": i}
                        for i, cid in enumerate(members)
                    ],
                )
        return group

    async def get_group(self, group_id: str) -> InstanceGroup | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(select(groups_table).where(groups_table.c.id == group_id))
            ).mappings().first()
            if row is None:
                return None
            member_ids = await self._member_ids(conn, group_id)
        return InstanceGroup(**row, connection_ids=member_ids)

    async def list_groups(self) -> list[InstanceGroup]:
        async with self._engine.connect() as conn:
            rows = (
                await conn.execute(select(groups_table).order_by(groups_table.c.name))
            ).mappings().all()
            groups = []
            for row in rows:
                member_ids = await self._member_ids(conn, row["id"])
                groups.append(InstanceGroup(**row, connection_ids=member_ids))
        return groups

    async def list_group_connections(self, group_id: str) -> list[ConnectionRecord]:
        """Member connection records in member order.  Unknown ids are skipped."""
        query = (
            select(connections_table)
            .join(
                group_members_table,
                group_members_table.c.connection_id == connections_table.c.id,
            )
            .where(group_members_table.c.group_id == group_id)
            .order_by(group_members_table.c.position)
        )
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [ConnectionRecord(**row) for row in rows]

    async def delete_group(self, group_id: str) -> bool:
        """Delete a group.  Migration records keep their ``group_id``."""
        async with self._engine.begin() as conn:
            await conn.execute(
                delete(group_members_table).where(group_members_table.c.group_id == group_id)
            )
            result = await conn.execute(delete(groups_table).where(groups_table.c.id == group_id))
        return result.rowcount > 0

    @staticmethod
    async def _member_ids(conn: AsyncConnection, group_id: str) -> list[str]:
        result = await conn.execute(
            select(group_members_table.c.connection_id)
            .where(group_members_table.c.group_id == group_id)
            .order_by(group_members_table.c.position)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Migration history
    # ------------------------------------------------------------------

    async def record_migration(self, record: MigrationRecord) -> MigrationRecord:
        """Append a migration record and return it with names resolved.

        ``group_id`` is stored as given, whether or not the group exists.
        """
        values: dict[str, Any] = record.model_dump(
            exclude={"group_name", "source_connection_name", "target_connection_name"}
        )
        async with self._engine.begin() as conn:
            await conn.execute(insert(migration_history_table).values(**values))
        logger.info(
            "Recorded migration %s (%d statement(s)) for %s",
            record.id, len(record.sql_statements), record.target_connection_id,
        )
        stored = await self.get_migration(record.id)
        return stored if stored is not None else record

    def _history_query(self) -> Any:
        mh = migration_history_table
        source_conn = connections_table.alias("source_conn")
        target_conn = connections_table.alias("target_conn")
        return (
            select(
                mh,
                source_conn.c.name.label("source_connection_name"),
                target_conn.c.name.label("target_connection_name"),
                groups_table.c.name.label("group_name"),
            )
            .select_from(
                mh.outerjoin(source_conn, mh.c.source_connection_id == source_conn.c.id)
                .outerjoin(target_conn, mh.c.target_connection_id == target_conn.c.id)
                .outerjoin(groups_table, mh.c.group_id == groups_table.c.id)
            )
        )

    async def get_migration(self, migration_id: str) -> MigrationRecord | None:
        query = self._history_query().where(migration_history_table.c.id == migration_id)
        async with self._engine.connect() as conn:
            row = (await conn.execute(query)).mappings().first()
        return MigrationRecord(**row) if row else None

    async def list_migrations(
        self,
        target_connection_id: str | None = None,
        limit: int | None = 100,
    ) -> list[MigrationRecord]:
        """Migration records, newest first.

        Args:
            target_connection_id: Only records applied to this connection.
            limit: Maximum number of records (``None`` for all).
        """
        query = self._history_query()
        if target_connection_id:
            query = query.where(
                migration_history_table.c.target_connection_id == target_connection_id
            )
        query = query.order_by(migration_history_table.c.applied_at.desc())
        if limit:
            query = query.limit(limit)
        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).mappings().all()
        return [MigrationRecord(**row) for row in rows]

    async def delete_migration(self, migration_id: str) -> bool:
        """Hard-delete a migration record.  Returns False if it did not exist."""
        async with self._engine.begin() as conn:
            result = await conn.execute(
                delete(migration_history_table).where(
                    migration_history_table.c.id == migration_id
                )
            )
        return result.rowcount > 0
