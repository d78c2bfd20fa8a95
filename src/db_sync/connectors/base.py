"""Database connector protocol definition.

Defines the ``DatabaseConnector`` Protocol that the engine consumes, plus
the result models it returns.  All methods are ``async def``.

A connector maps to exactly one live database connection and is not
expected to support concurrent queries; callers serialize access through
``db_sync.pool.ConnectionPool``.

Usage:
    from db_sync.connectors.base import DatabaseConnector

    async def count_users(connector: DatabaseConnector) -> int:
        result = await connector.query('SELECT COUNT(*) AS count FROM "users"')
        return int(result.rows[0]["count"])
"""

from typing import Any, Protocol

from pydantic import BaseModel, Field


# ============================================================================
# Result Models
# ============================================================================


class QueryColumn(BaseModel):
    """A result-set column."""

    name: str
    data_type: str = ""


class QueryResult(BaseModel):
    """Rows returned by ``DatabaseConnector.query()``.

    Example:
        >>> result = QueryResult(rows=[{"id": 1}])
        >>> result.row_count
        1
    """

    columns: list[QueryColumn] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = -1
    execution_time_ms: float = 0.0

    def model_post_init(self, __context: Any) -> None:
        if self.row_count < 0:
            self.row_count = len(self.rows)


class ConnectionTestResult(BaseModel):
    """Outcome of ``DatabaseConnector.test_connection()``."""

    success: bool
    message: str = ""
    latency_ms: float | None = None
    server_version: str | None = None


# ============================================================================
# Protocol
# ============================================================================


class DatabaseConnector(Protocol):
    """Connector interface consumed by the sync engine.

    Statements use SQLAlchemy-style named parameters (``:name``) so the
    same SQL text works on every engine.
    """

    engine: str
    database: str | None

    async def connect(self) -> None:
        """Open the underlying connection.

        Raises:
            db_sync.errors.ConnectionError: If the database is unreachable or
                authentication fails.
        """
        ...

    async def disconnect(self) -> None:
        """Close the underlying connection.  Safe to call when not connected."""
        ...

    def is_connected(self) -> bool:
        """True while a live connection is held."""
        ...

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        """Run a statement that returns rows.

        Args:
            sql: SQL text with optional ``:name`` parameters.
            params: Parameter values.

        Returns:
            ``QueryResult`` with rows as dicts keyed by column name.

        Raises:
            db_sync.errors.ExecutionError: If the statement fails.
        """
        ...

    async def execute(
        self,
        sql: str,
        params: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> int:
        """Run a statement that does not return rows and commit it.

        Passing a list of parameter dicts executes the statement once per
        dict (``executemany``) inside one transaction.

        Returns:
            Number of rows affected, as reported by the driver.

        Raises:
            db_sync.errors.ExecutionError: If the statement fails.  Nothing
                from the failed call is committed.
        """
        ...

    async def test_connection(self) -> ConnectionTestResult:
        """Check that the database answers, without raising."""
        ...
