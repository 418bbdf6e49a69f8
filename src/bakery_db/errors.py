"""Exception hierarchy for bakery-db.

Every error raised by the library derives from ``PersistenceError`` so
callers can catch the whole family at once. Driver exceptions (SQLAlchemy,
asyncpg, OS) are wrapped at the connection manager boundary and chained
with ``raise ... from exc``.

Usage:
    from bakery_db.errors import PersistenceError, RestoreError

    try:
        report = await restorer.restore("backup-2026-10-19T08-30-00-000000Z.json")
    except RestoreError as exc:
        print(exc.table, exc.report)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bakery_db.backup.models import RestoreReport
    from bakery_db.deploy.models import TableRegression


class PersistenceError(Exception):
    """Base class for all bakery-db errors."""


# ============================================================================
# Connection / query errors
# ============================================================================


class DatabaseConnectionError(PersistenceError, ConnectionError):
    """The store is unreachable, unconfigured, or the pool is exhausted."""


class DatabaseTimeoutError(DatabaseConnectionError, TimeoutError):
    """A connect, checkout, or statement exceeded its configured timeout."""


class QueryError(PersistenceError):
    """A statement was rejected by the database."""

    def __init__(self, message: str, statement: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement


# ============================================================================
# Schema errors
# ============================================================================


class InvalidIdentifierError(PersistenceError, ValueError):
    """A table or column name does not match ``^[A-Za-z0-9_]+$``."""

    def __init__(self, name: Any) -> None:
        super().__init__(f"Invalid identifier: {name!r}")
        self.name = name


class TableNotFoundError(PersistenceError, LookupError):
    """A requested table does not exist in the working schema."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Table '{table}' does not exist")
        self.table = table


# ============================================================================
# Snapshot errors
# ============================================================================


class NoTablesError(PersistenceError):
    """The working schema has no base tables to snapshot."""

    def __init__(self, schema_name: str = "public") -> None:
        super().__init__(f"No tables found in schema '{schema_name}'")
        self.schema_name = schema_name


class SnapshotError(PersistenceError):
    """Reading a table or publishing the artifact failed."""

    def __init__(self, table: str | None, cause: BaseException | str) -> None:
        where = f" while reading table '{table}'" if table else ""
        super().__init__(f"Snapshot failed{where}: {cause}")
        self.table = table
        self.cause = cause


class ArtifactError(PersistenceError):
    """Base class for artifact storage problems."""


class ArtifactNotFoundError(ArtifactError, FileNotFoundError):
    """The named artifact does not exist in the storage directory."""


class InvalidArtifactError(ArtifactError, ValueError):
    """The artifact is unreadable, malformed, or outside the storage directory."""


# ============================================================================
# Restore / guard errors
# ============================================================================


class RestoreError(PersistenceError):
    """A restore failed and its transaction was rolled back."""

    def __init__(
        self,
        table: str | None,
        cause: BaseException | str,
        report: RestoreReport | None = None,
    ) -> None:
        where = f" on table '{table}'" if table else ""
        super().__init__(f"Restore failed{where}: {cause}")
        self.table = table
        self.cause = cause
        self.report = report


class DataLossDetected(PersistenceError):
    """Row counts decreased between the pre-deploy baseline and now."""

    def __init__(self, regressions: list[TableRegression]) -> None:
        names = ", ".join(
            f"{r.table} ({r.before} -> {r.after})" for r in regressions
        )
        super().__init__(f"Data loss detected: {names}")
        self.regressions = regressions


# ============================================================================
# Configuration errors
# ============================================================================


class ConfigError(PersistenceError):
    """The configuration file or environment is invalid."""


class ProfileNotFoundError(ConfigError, KeyError):
    """The selected database profile is not defined in db.toml."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
