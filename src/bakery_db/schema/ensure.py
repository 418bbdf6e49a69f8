"""Schema ensurer.

Creates the application's fixed table set if it is missing, adds any fixed
column an older deployment lacks, and seeds the minimum rows the
application needs to be usable (one administrator, one branch). Every
operation is idempotent.

Column names are lower case: the earlier service created these tables with
unquoted camelCase names (``branchId``), which PostgreSQL folds, and
existing databases and artifacts carry the folded names.

Usage:
    ensurer = SchemaEnsurer(manager)
    result = await ensurer.ensure_schema()
    seed = await ensurer.seed_minimum_data()
    if seed.one_time_password:
        print("Initial admin password:", seed.one_time_password)
"""

import asyncio
import logging
import secrets

import bcrypt
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    TIMESTAMP,
    false,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Connection
from sqlalchemy.schema import CreateColumn

from bakery_db.adapters.pool import ConnectionManager, Transaction
from bakery_db.schema.comparator import validate_schema
from bakery_db.schema.introspector import SchemaIntrospector
from bakery_db.schema.models import ColumnDiff, EnsureResult, SeedResult

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_NAME = "مدير النظام"
DEFAULT_BRANCH_NAME = "الفرع الرئيسي"
DEFAULT_BRANCH_LOCATION = "الرياض"

_now = text("CURRENT_TIMESTAMP")


def build_metadata(schema: str | None = None) -> MetaData:
    """SQLAlchemy Core definitions of the fixed application tables."""
    metadata = MetaData(schema=schema)
    json_type = JSON().with_variant(JSONB(), "postgresql")

    Table(
        "users",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("username", String(100), unique=True, nullable=False),
        Column("name", String(100), nullable=False),
        Column("password_hash", String(255), nullable=False),
        Column("role", String(50), nullable=False),
        Column("branchid", Integer),
        Column("must_change_password", Boolean, nullable=False, server_default=false()),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "branches",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(100), nullable=False),
        Column("location", String(255)),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "monthly_targets",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("branchid", Integer, nullable=False),
        Column("month", Integer, nullable=False),
        Column("year", Integer, nullable=False),
        Column("targetamount", Numeric(10, 2), nullable=False),
        Column("currentamount", Numeric(10, 2), server_default=text("0")),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "daily_sales",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("branchid", Integer, nullable=False),
        Column("cashierid", Integer, nullable=False),
        Column("date", Date, nullable=False),
        Column("total", Numeric(10, 2), nullable=False),
        Column("cash", Numeric(10, 2), nullable=False),
        Column("card", Numeric(10, 2), nullable=False),
        Column("transactions", Integer, server_default=text("0")),
        Column("status", String(50), server_default=text("'pending'")),
        Column("consolidatedid", Integer),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "consolidated_daily_sales",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("branchid", Integer, nullable=False),
        Column("date", Date, nullable=False),
        Column("totalsales", Numeric(10, 2), nullable=False),
        Column("totalcash", Numeric(10, 2), nullable=False),
        Column("totalcard", Numeric(10, 2), nullable=False),
        Column("totaltransactions", Integer, server_default=text("0")),
        Column("status", String(50), server_default=text("'pending'")),
        Column("closedby", Integer),
        Column("transferredby", Integer),
        Column("closedat", TIMESTAMP),
        Column("transferredat", TIMESTAMP),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "activities",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("userid", Integer, nullable=False),
        Column("action", String(100), nullable=False),
        Column("details", json_type),
        Column("branchid", Integer),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    Table(
        "notifications",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("userid", Integer),
        Column("title", String(100), nullable=False),
        Column("message", Text, nullable=False),
        Column("isread", Boolean, server_default=false()),
        Column("type", String(50)),
        Column("created_at", TIMESTAMP, server_default=_now),
    )
    return metadata


def hash_password(password: str) -> str:
    """bcrypt hash in the ``$2b$`` format the application verifies."""
    encoded = password.encode("utf-8")
    if len(encoded) > 72:
        raise ValueError("Password exceeds bcrypt's 72-byte limit")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("ascii")


class SchemaEnsurer:
    """Idempotent creation and seeding of the fixed application tables.

    Args:
        manager: Connection manager for the application database.
        introspector: Introspector carrying schema name and exclusions.
        initial_admin_password: Credential for a newly seeded administrator.
            When None a random one-time password is generated and returned.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        introspector: SchemaIntrospector | None = None,
        initial_admin_password: str | None = None,
    ) -> None:
        self._manager = manager
        self._introspector = introspector or SchemaIntrospector(manager)
        self._initial_admin_password = initial_admin_password
        schema = self._introspector.schema_name
        self.metadata = build_metadata(None if schema == "public" else schema)

    @property
    def expected_columns(self) -> dict[str, set[str]]:
        return {
            table.name: {c.name for c in table.columns}
            for table in self.metadata.sorted_tables
        }

    async def ensure_schema(self) -> EnsureResult:
        """Create missing fixed tables and add missing fixed columns."""
        result = EnsureResult()
        async with self._manager.transaction() as tx:
            introspector = self._introspector.bind(tx)
            existing = set(await introspector.table_names())

            await tx.run_sync(self.metadata.create_all)
            result.created_tables = [
                t.name for t in self.metadata.sorted_tables if t.name not in existing
            ]

            actual = {
                table: cols
                for table, cols in (await introspector.get_column_names()).items()
                if table in self.expected_columns
            }
            report = validate_schema(actual, self.expected_columns)
            for diff in report.missing_columns:
                if await tx.run_sync(self._add_column, diff):
                    result.added_columns.append(diff)
                else:
                    result.skipped_columns.append(diff)

        for table in result.created_tables:
            logger.info("Created table %s", table)
        for diff in result.added_columns:
            logger.info("Added column %s.%s", diff.table, diff.column)
        for diff in result.skipped_columns:
            logger.warning("Cannot add key column %s.%s to existing table", diff.table, diff.column)
        return result

    def _add_column(self, conn: Connection, diff: ColumnDiff) -> bool:
        table = next(t for t in self.metadata.sorted_tables if t.name == diff.table)
        column = table.columns[diff.column]
        if column.primary_key:
            return False
        # Existing rows have no value; only columns with a default may be NOT NULL
        if not column.nullable and column.server_default is None:
            column = Column(column.name, column.type, nullable=True)
            Table(table.name, MetaData(), column)
        ddl = CreateColumn(column).compile(dialect=conn.dialect)
        target = conn.dialect.identifier_preparer.format_table(table)
        conn.execute(text(f"ALTER TABLE {target} ADD COLUMN {ddl}"))
        return True

    async def seed_minimum_data(self) -> SeedResult:
        """Insert one administrator and one branch if none exist."""
        result = SeedResult()
        users = self._introspector.qualified_name("users")
        branches = self._introspector.qualified_name("branches")

        async with self._manager.transaction() as tx:
            if tx.dialect_name == "postgresql":
                # Serialize concurrent seeders
                await tx.execute(f"LOCK TABLE {users}, {branches} IN SHARE ROW EXCLUSIVE MODE")

            admins = await tx.execute(
                f"SELECT COUNT(*) AS count FROM {users} WHERE role = :role",
                {"role": "admin"},
            )
            if not admins.scalar():
                username = await self._free_username(tx, users)
                password = self._initial_admin_password
                generated = password is None
                if generated:
                    password = secrets.token_urlsafe(12)
                password_hash = await asyncio.to_thread(hash_password, password)
                await tx.execute(
                    f"INSERT INTO {users} "
                    "(username, name, password_hash, role, must_change_password) "
                    "VALUES (:username, :name, :password_hash, :role, :must_change)",
                    {
                        "username": username,
                        "name": DEFAULT_ADMIN_NAME,
                        "password_hash": password_hash,
                        "role": "admin",
                        "must_change": True,
                    },
                )
                result.admin_created = True
                result.admin_username = username
                result.one_time_password = password if generated else None

            branch_count = await tx.execute(f"SELECT COUNT(*) AS count FROM {branches}")
            if not branch_count.scalar():
                await tx.execute(
                    f"INSERT INTO {branches} (name, location) VALUES (:name, :location)",
                    {"name": DEFAULT_BRANCH_NAME, "location": DEFAULT_BRANCH_LOCATION},
                )
                result.branch_created = True

        if result.admin_created:
            logger.warning(
                "Seeded administrator '%s'; password change required at first login",
                result.admin_username,
            )
        if result.branch_created:
            logger.info("Seeded default branch")
        return result

    async def _free_username(self, tx: Transaction, users: str) -> str:
        candidate = DEFAULT_ADMIN_USERNAME
        suffix = 1
        while True:
            taken = await tx.execute(
                f"SELECT COUNT(*) AS count FROM {users} WHERE username = :username",
                {"username": candidate},
            )
            if not taken.scalar():
                return candidate
            suffix += 1
            candidate = f"{DEFAULT_ADMIN_USERNAME}{suffix}"
