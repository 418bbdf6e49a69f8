"""Tests for the bakery-db command line."""

import asyncio
import json
from pathlib import Path

import pytest
from rich.console import Console

import bakery_db.cli as cli
from bakery_db.adapters.pool import ConnectionManager
from bakery_db.cli import EXIT_DATA_LOSS, main

from conftest import create_shop


def _with_manager(url: str, fn) -> object:
    async def run():
        manager = ConnectionManager(url)
        try:
            return await fn(manager)
        finally:
            await manager.close()

    return asyncio.run(run())


def _count(url: str, table: str) -> int:
    return _with_manager(url, lambda m: m.fetch_value(f"SELECT COUNT(*) FROM {table}"))


@pytest.fixture(autouse=True)
def cli_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, db_url: str, storage_dir: Path
) -> None:
    for var in ("DB_PROFILE", "INITIAL_ADMIN_PASSWORD", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("DATA_PERSISTENCE_DIR", str(storage_dir))
    monkeypatch.setattr(cli, "console", Console(width=200))


@pytest.fixture
def shop_db(db_url: str) -> str:
    _with_manager(db_url, create_shop)
    return db_url


class TestArgumentParsing:
    """Subcommands are required."""

    def test_no_command(self) -> None:
        with pytest.raises(SystemExit):
            main([])

    def test_unknown_command(self) -> None:
        with pytest.raises(SystemExit):
            main(["explode"])


class TestStatus:
    def test_status(self, shop_db: str, capsys: pytest.CaptureFixture) -> None:
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert "orders" in out
        assert "10" in out

    def test_unreachable(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@127.0.0.1:1/bakery")
        assert main(["status"]) == 1
        assert "Database unavailable" in capsys.readouterr().out


class TestProfiles:
    def test_lists_profiles(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        (tmp_path / "db.toml").write_text(
            '[profiles.render]\nurl = "postgresql://h/db"\ndescription = "Production"\n'
            '[profiles.local]\nurl = "sqlite+aiosqlite:///x.db"\nprovider = "sqlite"\n',
            encoding="utf-8",
        )
        monkeypatch.setenv("DB_PROFILE", "local")
        assert main(["profiles"]) == 0
        out = capsys.readouterr().out
        assert "render" in out
        assert "Production" in out

    def test_missing_config(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["profiles"]) == 1
        assert "not found" in capsys.readouterr().out


class TestBackupListValidate:
    """Artifacts written and inspected from the command line."""

    def test_backup_then_list(self, shop_db: str, storage_dir: Path, capsys) -> None:
        assert main(["backup"]) == 0
        (artifact,) = storage_dir.glob("backup-*.json")
        capsys.readouterr()

        assert main(["list"]) == 0
        assert artifact.name in capsys.readouterr().out

    def test_backup_empty_database(self, storage_dir: Path, capsys) -> None:
        assert main(["backup"]) == 1
        assert "nothing to back up" in capsys.readouterr().out
        assert not list(storage_dir.glob("backup-*.json"))

    def test_list_empty(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["list"]) == 0
        assert "No artifacts" in capsys.readouterr().out

    def test_validate(self, shop_db: str, storage_dir: Path) -> None:
        assert main(["backup"]) == 0
        (artifact,) = storage_dir.glob("backup-*.json")
        assert main(["validate", artifact.name]) == 0

    def test_validate_invalid(self, storage_dir: Path, capsys: pytest.CaptureFixture) -> None:
        storage_dir.mkdir(parents=True)
        name = "backup-2026-10-19T08-30-00-000000Z.json"
        (storage_dir / name).write_text(
            json.dumps({"users; DROP TABLE users": [{"id": 1}]}), encoding="utf-8"
        )
        assert main(["validate", name]) == 1
        assert "Invalid table name" in capsys.readouterr().out


class TestRestore:
    """Restore requires an explicit --confirm."""

    def test_dry_run_changes_nothing(self, shop_db: str, capsys) -> None:
        assert main(["backup"]) == 0
        _with_manager(shop_db, lambda m: m.execute("DELETE FROM orders"))

        assert main(["restore", "--latest"]) == 0

        assert "--confirm" in capsys.readouterr().out
        assert _count(shop_db, "orders") == 0

    def test_confirmed_restore(self, shop_db: str, capsys) -> None:
        assert main(["backup"]) == 0
        _with_manager(shop_db, lambda m: m.execute("DELETE FROM orders"))

        assert main(["restore", "--latest", "--confirm"]) == 0

        assert "Restore committed" in capsys.readouterr().out
        assert _count(shop_db, "orders") == 10

    def test_no_artifact_given(self, shop_db: str) -> None:
        assert main(["restore"]) == 1

    def test_latest_with_empty_store(self, shop_db: str) -> None:
        assert main(["restore", "--latest", "--confirm"]) == 1

    def test_failed_restore(self, shop_db: str, storage_dir: Path, capsys) -> None:
        storage_dir.mkdir(parents=True)
        name = "backup-2026-10-19T08-30-00-000000Z.json"
        (storage_dir / name).write_text(
            json.dumps({"orders": [{"id": 1, "user_id": None, "amount_cents": 1}]}),
            encoding="utf-8",
        )

        assert main(["restore", name, "--confirm"]) == 1

        assert "rolled back" in capsys.readouterr().out
        assert _count(shop_db, "orders") == 10


class TestGuardCommands:
    """capture-baseline and verify bracket a deployment."""

    def test_verify_without_baseline(self, shop_db: str, capsys) -> None:
        assert main(["verify"]) == 0
        assert "stale" in capsys.readouterr().out

    def test_clean_deploy(self, shop_db: str) -> None:
        assert main(["capture-baseline"]) == 0
        assert main(["verify"]) == 0

    def test_loss_exit_code(self, shop_db: str, capsys) -> None:
        assert main(["capture-baseline"]) == 0
        _with_manager(shop_db, lambda m: m.execute("DELETE FROM orders WHERE id > 7"))

        assert main(["verify"]) == EXIT_DATA_LOSS

        out = capsys.readouterr().out
        assert "Data Loss Detected" in out
        assert "orders" in out


class TestSchemaCommands:
    """ensure-schema and setup on a fresh database."""

    def test_ensure_schema_with_seed(self, db_url: str, capsys) -> None:
        assert main(["ensure-schema", "--seed"]) == 0
        out = capsys.readouterr().out
        assert "CREATE TABLE" in out
        assert "One-time password" in out
        assert _count(db_url, "users") == 1

    def test_ensure_schema_twice(self, db_url: str, capsys) -> None:
        assert main(["ensure-schema"]) == 0
        capsys.readouterr()
        assert main(["ensure-schema"]) == 0
        assert "already up to date" in capsys.readouterr().out

    def test_setup(self, db_url: str, capsys) -> None:
        assert main(["setup"]) == 0
        out = capsys.readouterr().out
        assert "Created tables" in out
        assert "No data loss" in out
        assert _count(db_url, "branches") == 1
