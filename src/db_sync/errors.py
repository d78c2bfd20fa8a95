"""Error taxonomy for the sync engine.

Read-only operations (introspection, diff, row counts) raise these errors.
Mutating operations (sync, dump & restore, migration apply) catch them per
table and record the message in their result objects instead.

``ConnectionError`` intentionally shares its name with the builtin; import
the module (``from db_sync import errors``) and refer to
``errors.ConnectionError`` where the builtin is also in scope.
"""


class SyncEngineError(Exception):
    """Base class for all engine errors."""

    @property
    def kind(self) -> str:
        """Short error kind used as a prefix in result ``errors`` lists."""
        return type(self).__name__

    def describe(self) -> str:
        """Format as ``"<Kind>: <message>"``."""
        return f"{self.kind}: {self}"


class ConnectionError(SyncEngineError):
    """Connection is unreachable or authentication failed.

    Fatal for the affected connection's operations.  Not retried.
    """

    pass


class IntrospectionError(SyncEngineError):
    """Catalog could not be read (missing schema, unsupported feature, malformed catalog)."""

    pass


class ValidationError(SyncEngineError):
    """A required option or precondition is missing.

    Raised before any mutation is attempted, e.g. syncing a table that has
    no primary key.
    """

    pass


class ExecutionError(SyncEngineError):
    """A SQL statement failed at the database.

    Attributes:
        sql: The statement that failed, when known.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


class DependencyCycleError(SyncEngineError):
    """The foreign-key graph could not be fully ordered.

    Carries a best-effort order so callers can proceed anyway.

    Attributes:
        order: Deterministic best-effort table order (parents first).
        broken_edges: ``(table, fk_name, referenced_table)`` edges that were
            dropped to break cycles.
        self_references: Tables with a foreign key to themselves.
    """

    def __init__(
        self,
        order: list[str],
        broken_edges: list[tuple[str, str, str]],
        self_references: list[str] | None = None,
    ) -> None:
        self.order = order
        self.broken_edges = broken_edges
        self.self_references = self_references or []
        parts = [f"{t}.{name} -> {ref}" for t, name, ref in broken_edges]
        parts += [f"{t} (self-reference)" for t in self.self_references]
        super().__init__("Foreign key cycle broken at: " + ", ".join(parts))
