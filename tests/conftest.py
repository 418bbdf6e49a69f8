"""Shared fixtures: a file-backed SQLite database with a small shop schema.

The shop schema has a three-level foreign-key chain
(branches <- users <- orders) and a JSON column, which is enough to
exercise ordering, cascading clears and structured values.
"""

import json
from pathlib import Path

import pytest

from bakery_db.adapters.pool import ConnectionManager
from bakery_db.backup.storage import ArtifactStore
from bakery_db.config.models import PersistenceSettings
from bakery_db.factory import PersistenceServices, build_services

SHOP_DDL = [
    """
    CREATE TABLE branches (
        id INTEGER PRIMARY KEY,
        name VARCHAR(100) NOT NULL
    )
    """,
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        username VARCHAR(100) NOT NULL UNIQUE,
        branch_id INTEGER REFERENCES branches(id),
        nickname VARCHAR(50),
        active BOOLEAN DEFAULT 1
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(id),
        amount_cents INTEGER NOT NULL,
        details JSON
    )
    """,
]


def order_details(i: int) -> str:
    return json.dumps({"items": [i, i + 1], "note": None if i % 2 else "gift"})


async def create_shop(manager: ConnectionManager, users: int = 3, orders: int = 10) -> None:
    """Create the shop tables and fill them with deterministic rows."""
    for ddl in SHOP_DDL:
        await manager.execute(ddl)
    await manager.execute_many(
        "INSERT INTO branches (id, name) VALUES (:id, :name)",
        [{"id": 1, "name": "Main"}, {"id": 2, "name": "Airport"}],
    )
    await manager.execute_many(
        "INSERT INTO users (id, username, branch_id, nickname, active) "
        "VALUES (:id, :username, :branch_id, :nickname, :active)",
        [
            {
                "id": i,
                "username": f"user{i}",
                "branch_id": 1 + i % 2,
                "nickname": None if i == 1 else f"nick{i}",
                "active": i != 2,
            }
            for i in range(1, users + 1)
        ],
    )
    await manager.execute_many(
        "INSERT INTO orders (id, user_id, amount_cents, details) "
        "VALUES (:id, :user_id, :amount_cents, :details)",
        [
            {
                "id": i,
                "user_id": 1 + i % users,
                "amount_cents": 100 * i,
                "details": order_details(i),
            }
            for i in range(1, orders + 1)
        ],
    )


async def fetch_rows(manager: ConnectionManager, table: str) -> list[dict]:
    result = await manager.execute(f'SELECT * FROM "{table}" ORDER BY id')
    return result.rows


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'bakery.db'}"


@pytest.fixture
async def manager(db_url: str):
    manager = ConnectionManager(db_url)
    yield manager
    await manager.close()


@pytest.fixture
async def shop(manager: ConnectionManager) -> ConnectionManager:
    """Manager whose database already holds the populated shop schema."""
    await create_shop(manager)
    return manager


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def store(storage_dir: Path) -> ArtifactStore:
    return ArtifactStore(storage_dir)


@pytest.fixture
def settings(db_url: str, storage_dir: Path, monkeypatch: pytest.MonkeyPatch) -> PersistenceSettings:
    for var in ("DATABASE_URL", "DATA_PERSISTENCE_DIR", "INITIAL_ADMIN_PASSWORD", "DB_PROFILE"):
        monkeypatch.delenv(var, raising=False)
    return PersistenceSettings(database_url=db_url, storage_dir=storage_dir)


@pytest.fixture
def services(settings: PersistenceSettings, manager: ConnectionManager) -> PersistenceServices:
    return build_services(settings, manager=manager)
