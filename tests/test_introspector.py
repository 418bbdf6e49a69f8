"""Tests for live schema introspection (SQLite catalog path)."""

import pytest

from bakery_db.adapters.pool import ConnectionManager
from bakery_db.errors import InvalidIdentifierError, TableNotFoundError
from bakery_db.schema.introspector import (
    DEFAULT_EXCLUDED_TABLES,
    SchemaIntrospector,
    normalize_data_type,
)


class TestNormalizeDataType:
    """Catalog type names collapse to short standard names."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("timestamp with time zone", "timestamptz"),
            ("timestamp without time zone", "timestamp"),
            ("character varying", "varchar"),
            ("VARCHAR(100)", "varchar"),
            ("NUMERIC(10, 2)", "numeric"),
            ("integer", "int"),
            ("BOOLEAN", "bool"),
            ("double precision", "float8"),
            ("jsonb", "jsonb"),
            ("JSON", "json"),
            ("DATETIME", "timestamp"),
        ],
    )
    def test_mapping(self, raw: str, expected: str) -> None:
        assert normalize_data_type(raw) == expected


class TestConstructor:
    """Constructor validates the schema name and sets exclusions."""

    def test_default_exclusions(self, manager: ConnectionManager) -> None:
        assert SchemaIntrospector(manager).excluded_tables == DEFAULT_EXCLUDED_TABLES

    def test_custom_exclusions(self, manager: ConnectionManager) -> None:
        introspector = SchemaIntrospector(manager, excluded_tables={"audit_log"})
        assert introspector.excluded_tables == frozenset({"audit_log"})

    def test_invalid_schema_name(self, manager: ConnectionManager) -> None:
        with pytest.raises(InvalidIdentifierError):
            SchemaIntrospector(manager, schema_name="public; DROP SCHEMA public")

    def test_bind_keeps_configuration(self, manager: ConnectionManager) -> None:
        introspector = SchemaIntrospector(manager, excluded_tables={"audit_log"})
        bound = introspector.bind(manager)
        assert bound is not introspector
        assert bound.excluded_tables == introspector.excluded_tables
        assert bound.schema_name == introspector.schema_name

    def test_qualified_name_quotes(self, manager: ConnectionManager) -> None:
        assert SchemaIntrospector(manager).qualified_name("users") == '"users"'


class TestTables:
    """Base table listing."""

    async def test_empty_database(self, manager: ConnectionManager) -> None:
        assert await SchemaIntrospector(manager).list_base_tables() == []

    async def test_sorted_by_name(self, shop: ConnectionManager) -> None:
        names = await SchemaIntrospector(shop).table_names()
        assert names == ["branches", "orders", "users"]

    async def test_views_are_not_base_tables(self, shop: ConnectionManager) -> None:
        await shop.execute("CREATE VIEW active_users AS SELECT * FROM users WHERE active")
        assert "active_users" not in await SchemaIntrospector(shop).table_names()

    async def test_excluded_tables_omitted(self, shop: ConnectionManager) -> None:
        await shop.execute("CREATE TABLE schema_migrations (version TEXT)")
        introspector = SchemaIntrospector(shop)
        assert "schema_migrations" not in await introspector.table_names()

    async def test_unsafe_catalog_name_skipped(self, shop: ConnectionManager) -> None:
        await shop.execute('CREATE TABLE "odd name" (id INTEGER)')
        assert "odd name" not in await SchemaIntrospector(shop).table_names()

    async def test_table_exists(self, shop: ConnectionManager) -> None:
        introspector = SchemaIntrospector(shop)
        assert await introspector.table_exists("users")
        assert not await introspector.table_exists("legacy_table")

    async def test_table_exists_rejects_injection(self, shop: ConnectionManager) -> None:
        with pytest.raises(InvalidIdentifierError):
            await SchemaIntrospector(shop).table_exists("users; DROP TABLE users")


class TestColumns:
    """Column metadata."""

    async def test_column_order_and_types(self, shop: ConnectionManager) -> None:
        columns = await SchemaIntrospector(shop).get_columns("orders")
        assert [c.name for c in columns] == ["id", "user_id", "amount_cents", "details"]
        assert [c.data_type for c in columns] == ["int", "int", "int", "json"]
        assert [c.position for c in columns] == [1, 2, 3, 4]

    async def test_nullability(self, shop: ConnectionManager) -> None:
        columns = {c.name: c for c in await SchemaIntrospector(shop).get_columns("users")}
        assert not columns["id"].is_nullable
        assert not columns["username"].is_nullable
        assert columns["nickname"].is_nullable

    async def test_missing_table_raises(self, shop: ConnectionManager) -> None:
        with pytest.raises(TableNotFoundError):
            await SchemaIntrospector(shop).get_columns("legacy_table")

    async def test_invalid_name_raises(self, shop: ConnectionManager) -> None:
        with pytest.raises(InvalidIdentifierError):
            await SchemaIntrospector(shop).get_columns('users"')

    async def test_column_names_by_table(self, shop: ConnectionManager) -> None:
        names = await SchemaIntrospector(shop).get_column_names()
        assert names["branches"] == {"id", "name"}
        assert set(names) == {"branches", "orders", "users"}


class TestForeignKeys:
    """Dependency graph from foreign keys."""

    async def test_graph(self, shop: ConnectionManager) -> None:
        deps = await SchemaIntrospector(shop).get_foreign_keys()
        assert deps == {"branches": set(), "users": {"branches"}, "orders": {"users"}}

    async def test_self_reference_omitted(self, manager: ConnectionManager) -> None:
        await manager.execute(
            "CREATE TABLE staff (id INTEGER PRIMARY KEY, manager_id INTEGER REFERENCES staff(id))"
        )
        assert await SchemaIntrospector(manager).get_foreign_keys() == {"staff": set()}


class TestCounts:
    """Row counts and database identity."""

    async def test_row_counts(self, shop: ConnectionManager) -> None:
        counts = await SchemaIntrospector(shop).get_row_counts()
        assert counts == {"branches": 2, "orders": 10, "users": 3}

    async def test_database_info(self, shop: ConnectionManager) -> None:
        info = await SchemaIntrospector(shop).database_info()
        assert info.name == "main"
        assert info.user == "sqlite"
        assert info.server_time
