"""Database connectors package.

Provides the ``DatabaseConnector`` Protocol and the SQLAlchemy-backed
implementation used for PostgreSQL, MySQL, MariaDB, and SQLite.

Usage:
    from db_sync.connectors import DatabaseConnector, SQLAlchemyConnector
    from db_sync.connectors import create_connector
"""

from db_sync.connectors.base import (
    ConnectionTestResult,
    DatabaseConnector,
    QueryColumn,
    QueryResult,
)
from db_sync.connectors.sql import SQLAlchemyConnector, create_connector, normalize_url

__all__ = [
    "DatabaseConnector",
    "QueryColumn",
    "QueryResult",
    "ConnectionTestResult",
    "SQLAlchemyConnector",
    "create_connector",
    "normalize_url",
]
