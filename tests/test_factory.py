"""Tests for service wiring and logging setup."""

import json
import logging
from datetime import timedelta

import pytest

import bakery_db
from bakery_db.adapters.pool import ConnectionManager
from bakery_db.config.models import PersistenceSettings
from bakery_db.factory import build_services, create_connection_manager
from bakery_db.log_setup import JsonFormatter, configure_logging


class TestBuildServices:
    """One connection manager is shared by every component."""

    def test_shared_manager(self, settings: PersistenceSettings) -> None:
        services = build_services(settings)
        assert services.writer._manager is services.manager
        assert services.restorer._manager is services.manager
        assert services.guard._manager is services.manager
        assert services.ensurer._manager is services.manager

    def test_injected_manager(self, settings: PersistenceSettings, manager: ConnectionManager) -> None:
        assert build_services(settings, manager=manager).manager is manager

    def test_paths_from_settings(self, settings: PersistenceSettings) -> None:
        services = build_services(settings)
        assert services.store.directory == settings.storage_dir
        assert services.guard.stats_path == settings.storage_dir / "pre_deploy_stats.json"

    def test_baseline_age(self, settings: PersistenceSettings) -> None:
        assert build_services(settings).guard._max_age == timedelta(hours=24)
        settings.baseline_max_age_hours = 0
        assert build_services(settings).guard._max_age is None

    def test_admin_password_passed(self, settings: PersistenceSettings) -> None:
        settings = settings.model_copy(update={"initial_admin_password": None})
        assert build_services(settings).ensurer._initial_admin_password is None

    def test_connection_manager_from_settings(self, settings: PersistenceSettings) -> None:
        manager = create_connection_manager(settings)
        assert manager.is_configured
        assert manager._statement_timeout == settings.statement_timeout

    async def test_async_context_closes(self, settings: PersistenceSettings) -> None:
        async with build_services(settings) as services:
            assert await services.manager.test_connection()
        assert services.manager._engine is None


class TestExports:
    """Top-level package re-exports the main entry points."""

    @pytest.mark.parametrize("name", bakery_db.__all__)
    def test_exported(self, name: str) -> None:
        assert getattr(bakery_db, name) is not None


class TestLogging:
    """Entry points install handlers; library modules only log."""

    def test_json_formatter(self) -> None:
        record = logging.LogRecord(
            "bakery_db.backup.writer", logging.INFO, __file__, 1, "wrote %s", ("x",), None
        )
        record.table = "orders"
        data = json.loads(JsonFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "bakery_db.backup.writer"
        assert data["message"] == "wrote x"
        assert data["table"] == "orders"

    def test_configure_logging_levels(self) -> None:
        configure_logging("debug", "json")
        try:
            assert logging.getLogger("bakery_db").level == logging.DEBUG
            root = logging.getLogger()
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
        finally:
            logging.getLogger("bakery_db").setLevel(logging.NOTSET)
