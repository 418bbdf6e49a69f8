"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol shared by ``ConnectionManager`` and
the ``Transaction`` handle it yields. Components written against the
protocol run unchanged on a pooled connection or inside a caller's
transaction. All I/O methods are ``async def``.

Usage:
    from bakery_db.adapters.base import DatabaseClient

    async def count_users(db: DatabaseClient) -> int:
        result = await db.execute('SELECT COUNT(*) FROM "users"')
        return int(result.scalar() or 0)
"""

from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class QueryResult:
    """Materialized result of a single statement.

    Attributes:
        columns: Column names in select-list order (empty for DML/DDL).
        rows: One dict per row, keyed by column name, in column order.
        rowcount: Driver-reported affected row count (``-1`` if unknown).
    """

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1

    def first(self) -> dict[str, Any] | None:
        """Return the first row or None."""
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """Return the first column of the first row, or None."""
        if not self.rows or not self.columns:
            return None
        return self.rows[0][self.columns[0]]


@runtime_checkable
class DatabaseClient(Protocol):
    """Protocol for statement execution against a relational store."""

    @property
    def dialect_name(self) -> str:
        """SQLAlchemy dialect name, e.g. ``"postgresql"`` or ``"sqlite"``."""
        ...

    async def execute(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> QueryResult:
        """Execute one parameterized statement and materialize its rows."""
        ...

    async def execute_many(
        self, sql: str, params: Sequence[dict[str, Any]]
    ) -> int:
        """Execute one statement for each parameter set. Returns len(params)."""
        ...

    def stream(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        batch_size: int = 500,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield the statement's rows in batches of at most *batch_size*."""
        ...

    async def run_sync(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a synchronous SQLAlchemy callable (e.g. ``metadata.create_all``)."""
        ...
