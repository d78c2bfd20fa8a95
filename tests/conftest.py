"""Shared fixtures: an in-memory recording connector and SQLite databases."""

from contextlib import asynccontextmanager
from typing import Any

import pytest

from db_sync import errors
from db_sync.connectors.base import ConnectionTestResult, QueryResult
from db_sync.connectors.sql import SQLAlchemyConnector


# ------------------------------------------------------------------
# Recording connector
# ------------------------------------------------------------------


class FakeConnector:
    """``DatabaseConnector`` that records every statement.

    Args:
        engine: Dialect name reported to the engine.
        responses: SQL fragment -> rows returned by ``query()`` for any
            statement containing that fragment (first match wins).
        fail_on: SQL fragments that make ``query()``/``execute()`` raise
            ``ExecutionError``.
    """

    def __init__(
        self,
        engine: str = "postgres",
        database: str | None = None,
        responses: dict[str, list[dict[str, Any]]] | None = None,
        fail_on: tuple[str, ...] = (),
    ) -> None:
        self.engine = engine
        self.database = database
        self.responses = responses or {}
        self.fail_on = fail_on
        self.calls: list[tuple[str, str, Any]] = []
        self.connected = False
        self.connect_count = 0

    async def connect(self) -> None:
        self.connected = True
        self.connect_count += 1

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        self.calls.append(("query", sql, params))
        self._maybe_fail(sql)
        for fragment, rows in self.responses.items():
            if fragment in sql:
                return QueryResult(rows=[dict(r) for r in rows])
        return QueryResult()

    async def execute(
        self,
        sql: str,
        params: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> int:
        self.calls.append(("execute", sql, params))
        self._maybe_fail(sql)
        return len(params) if isinstance(params, list) else 1

    async def test_connection(self) -> ConnectionTestResult:
        return ConnectionTestResult(success=True, message="ok")

    @property
    def executed(self) -> list[str]:
        return [sql for kind, sql, _ in self.calls if kind == "execute"]

    def _maybe_fail(self, sql: str) -> None:
        for fragment in self.fail_on:
            if fragment in sql:
                raise errors.ExecutionError(f"simulated failure on {fragment}", sql=sql)


@pytest.fixture
def make_connector():
    """Factory for ``FakeConnector`` instances."""

    def _make(engine: str = "postgres", **kwargs: Any) -> FakeConnector:
        return FakeConnector(engine, **kwargs)

    return _make


# ------------------------------------------------------------------
# SQLite databases
# ------------------------------------------------------------------


@pytest.fixture
def sqlite_url(tmp_path):
    """Build a ``sqlite:///`` URL for a database file under ``tmp_path``."""

    def _url(name: str) -> str:
        return f"sqlite:///{tmp_path / name}"

    return _url


@pytest.fixture
def sqlite_db(sqlite_url):
    """Open a connected SQLite connector, run setup statements, close on exit.

    Usage:
        async with sqlite_db("src.db", "CREATE TABLE t (id INTEGER PRIMARY KEY)") as db:
            ...
    """

    @asynccontextmanager
    async def _open(name: str, *statements: str):
        connector = SQLAlchemyConnector(sqlite_url(name))
        await connector.connect()
        try:
            for sql in statements:
                await connector.execute(sql)
            yield connector
        finally:
            await connector.disconnect()

    return _open


@pytest.fixture
def seed_sqlite(sqlite_url):
    """Create a SQLite file with setup statements and close it again."""

    async def _seed(name: str, *statements: str) -> str:
        url = sqlite_url(name)
        connector = SQLAlchemyConnector(url)
        await connector.connect()
        try:
            for sql in statements:
                await connector.execute(sql)
        finally:
            await connector.disconnect()
        return url

    return _seed
