"""Live schema introspection.

Queries the connected database for the facts the snapshot and restore
paths need: base tables, column types, foreign-key dependencies and row
counts. PostgreSQL is read through ``information_schema``; SQLite (local
development and tests) through ``sqlite_master`` and ``PRAGMA``.

Every table name this module returns has passed ``validate_identifier``.
Catalog entries that do not are logged and skipped, never returned.

Usage:
    from bakery_db.schema.introspector import SchemaIntrospector

    introspector = SchemaIntrospector(manager)
    for table in await introspector.list_base_tables():
        print(table.name, await introspector.count_rows(table.name))
"""

import logging
import re

from bakery_db.adapters.base import DatabaseClient
from bakery_db.errors import TableNotFoundError
from bakery_db.schema.identifiers import (
    is_valid_identifier,
    quote_identifier,
    validate_identifier,
)
from bakery_db.schema.models import ColumnSchema, DatabaseInfo, TableDescriptor

logger = logging.getLogger(__name__)

# Tables to exclude from introspection (extension / tooling tables)
DEFAULT_EXCLUDED_TABLES = frozenset(
    {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }
)

_TYPE_ARGS = re.compile(r"\s*\(.*\)\s*$")


def normalize_data_type(data_type: str) -> str:
    """Normalize catalog data type names.

    Maps verbose ``information_schema`` names (and SQLite declared types)
    to short standard names.

    Example:
        >>> normalize_data_type("timestamp with time zone")
        'timestamptz'
        >>> normalize_data_type("VARCHAR(100)")
        'varchar'
    """
    type_map = {
        "character varying": "varchar",
        "character": "char",
        "timestamp with time zone": "timestamptz",
        "timestamp without time zone": "timestamp",
        "time without time zone": "time",
        "time with time zone": "timetz",
        "integer": "int",
        "boolean": "bool",
        "double precision": "float8",
        "real": "float4",
        "decimal": "numeric",
        "datetime": "timestamp",
    }
    base = _TYPE_ARGS.sub("", data_type.strip().lower())
    return type_map.get(base, base)


class SchemaIntrospector:
    """Introspects the working schema of a connected database.

    Args:
        client: Any ``DatabaseClient`` (the connection manager or an open
            transaction handle).
        schema_name: Working schema on PostgreSQL. Ignored on SQLite.
        excluded_tables: Table names never reported as base tables.
    """

    def __init__(
        self,
        client: DatabaseClient,
        schema_name: str = "public",
        excluded_tables: frozenset[str] | set[str] | None = None,
    ) -> None:
        self._client = client
        self.schema_name = validate_identifier(schema_name)
        self.excluded_tables = (
            frozenset(excluded_tables)
            if excluded_tables is not None
            else DEFAULT_EXCLUDED_TABLES
        )

    def bind(self, client: DatabaseClient) -> "SchemaIntrospector":
        """Return a copy of this introspector that runs on *client*."""
        return SchemaIntrospector(client, self.schema_name, self.excluded_tables)

    @property
    def _is_postgres(self) -> bool:
        return self._client.dialect_name == "postgresql"

    def qualified_name(self, table: str) -> str:
        """Quoted, schema-qualified table name safe for interpolation."""
        quoted = quote_identifier(table)
        if self._is_postgres and self.schema_name != "public":
            return f"{quote_identifier(self.schema_name)}.{quoted}"
        return quoted

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def list_base_tables(self) -> list[TableDescriptor]:
        """List base tables (not views) ordered by name.

        Returns:
            Possibly empty list. Names failing the identifier pattern and
            excluded system tables are omitted.
        """
        if self._is_postgres:
            result = await self._client.execute(
                """
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = :schema
                  AND table_type = 'BASE TABLE'
                ORDER BY table_name
                """,
                {"schema": self.schema_name},
            )
        else:
            result = await self._client.execute(
                "SELECT name AS table_name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
                "ORDER BY name"
            )

        tables: list[TableDescriptor] = []
        for row in result.rows:
            name = row["table_name"]
            if name in self.excluded_tables:
                continue
            if not is_valid_identifier(name):
                logger.warning("Skipping table with unsafe name: %r", name)
                continue
            tables.append(TableDescriptor(name=name, schema_name=self.schema_name))
        return sorted(tables, key=lambda t: t.name)

    async def table_names(self) -> list[str]:
        return [t.name for t in await self.list_base_tables()]

    async def table_exists(self, table: str) -> bool:
        """True if *table* is a base table. Raises on an invalid identifier."""
        validate_identifier(table)
        return table in await self.table_names()

    # ------------------------------------------------------------------
    # Columns and keys
    # ------------------------------------------------------------------

    async def get_columns(self, table: str) -> list[ColumnSchema]:
        """Columns of *table* in ordinal order.

        Raises:
            InvalidIdentifierError: *table* is not a safe identifier.
            TableNotFoundError: *table* has no columns (does not exist).
        """
        validate_identifier(table)
        if self._is_postgres:
            result = await self._client.execute(
                """
                SELECT column_name, data_type, is_nullable,
                       column_default, ordinal_position
                FROM information_schema.columns
                WHERE table_schema = :schema AND table_name = :table
                ORDER BY ordinal_position
                """,
                {"schema": self.schema_name, "table": table},
            )
            columns = [
                ColumnSchema(
                    name=row["column_name"],
                    data_type=normalize_data_type(row["data_type"]),
                    is_nullable=(row["is_nullable"] == "YES"),
                    default=row["column_default"],
                    position=row["ordinal_position"],
                )
                for row in result.rows
            ]
        else:
            result = await self._client.execute(
                f"PRAGMA table_info({quote_identifier(table)})"
            )
            columns = [
                ColumnSchema(
                    name=row["name"],
                    data_type=normalize_data_type(row["type"] or "text"),
                    is_nullable=not row["notnull"] and not row["pk"],
                    default=row["dflt_value"],
                    position=row["cid"] + 1,
                )
                for row in result.rows
            ]

        if not columns:
            raise TableNotFoundError(table)
        return columns

    async def get_column_names(self) -> dict[str, set[str]]:
        """Map each base table to its set of column names."""
        names: dict[str, set[str]] = {}
        for table in await self.table_names():
            names[table] = {c.name for c in await self.get_columns(table)}
        return names

    async def get_foreign_keys(self) -> dict[str, set[str]]:
        """FK dependency graph: table -> set of tables it references.

        Self-references are omitted; they do not constrain load order.
        """
        tables = await self.table_names()
        deps: dict[str, set[str]] = {t: set() for t in tables}

        if self._is_postgres:
            result = await self._client.execute(
                """
                SELECT DISTINCT tc.table_name, ccu.table_name AS references_table
                FROM information_schema.table_constraints tc
                JOIN information_schema.constraint_column_usage ccu
                    ON tc.constraint_name = ccu.constraint_name
                    AND tc.table_schema = ccu.table_schema
                WHERE tc.constraint_type = 'FOREIGN KEY'
                  AND tc.table_schema = :schema
                """,
                {"schema": self.schema_name},
            )
            pairs = [(r["table_name"], r["references_table"]) for r in result.rows]
        else:
            pairs = []
            for table in tables:
                result = await self._client.execute(
                    f"PRAGMA foreign_key_list({quote_identifier(table)})"
                )
                pairs.extend((table, r["table"]) for r in result.rows)

        for table, referenced in pairs:
            if table in deps and referenced != table:
                deps[table].add(referenced)
        return deps

    # ------------------------------------------------------------------
    # Counts and identity
    # ------------------------------------------------------------------

    async def count_rows(self, table: str) -> int:
        result = await self._client.execute(
            f"SELECT COUNT(*) AS count FROM {self.qualified_name(table)}"
        )
        return int(result.scalar() or 0)

    async def get_row_counts(self) -> dict[str, int]:
        """Row count of every base table, keyed by table name."""
        return {t: await self.count_rows(t) for t in await self.table_names()}

    async def database_info(self) -> DatabaseInfo:
        """Database name, connected user, and server time."""
        if self._is_postgres:
            row = (
                await self._client.execute(
                    "SELECT NOW() AS time, current_database() AS db_name, "
                    "current_user AS db_user"
                )
            ).first() or {}
        else:
            row = (
                await self._client.execute(
                    "SELECT datetime('now') AS time, 'main' AS db_name, "
                    "'sqlite' AS db_user"
                )
            ).first() or {}
        server_time = row.get("time")
        return DatabaseInfo(
            name=str(row.get("db_name", "")),
            user=str(row.get("db_user", "")),
            server_time=(
                server_time.isoformat()
                if hasattr(server_time, "isoformat")
                else str(server_time)
            ),
        )
