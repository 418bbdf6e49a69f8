"""Service factory.

``build_services`` is the composition root: it creates the one
``ConnectionManager`` for a process and threads it through every component.
There is no module-level connection state; callers own the returned
``PersistenceServices`` and close it when done.

Usage:
    settings = load_settings()
    async with build_services(settings) as services:
        info = await services.writer.create_snapshot()
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from bakery_db.adapters.pool import ConnectionManager
from bakery_db.backup.restorer import SnapshotRestorer
from bakery_db.backup.storage import ArtifactStore
from bakery_db.backup.writer import SnapshotWriter
from bakery_db.config.models import PersistenceSettings
from bakery_db.deploy.guard import DeploymentGuard
from bakery_db.schema.ensure import SchemaEnsurer
from bakery_db.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


def create_connection_manager(settings: PersistenceSettings) -> ConnectionManager:
    """Connection manager configured from *settings* (engine created lazily)."""
    return ConnectionManager(
        settings.database_url,
        connect_timeout=settings.connect_timeout,
        statement_timeout=settings.statement_timeout,
        lock_timeout=settings.lock_timeout,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


@dataclass
class PersistenceServices:
    """Every component, sharing one connection manager."""

    settings: PersistenceSettings
    manager: ConnectionManager
    introspector: SchemaIntrospector
    store: ArtifactStore
    writer: SnapshotWriter
    restorer: SnapshotRestorer
    guard: DeploymentGuard
    ensurer: SchemaEnsurer

    async def close(self) -> None:
        await self.manager.close()

    async def __aenter__(self) -> "PersistenceServices":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def build_services(
    settings: PersistenceSettings, manager: ConnectionManager | None = None
) -> PersistenceServices:
    """Wire all components from *settings*.

    Args:
        settings: Loaded settings.
        manager: Existing connection manager to reuse (tests inject one).
    """
    manager = manager or create_connection_manager(settings)
    introspector = SchemaIntrospector(
        manager,
        schema_name=settings.schema_name,
        excluded_tables=set(settings.excluded_tables),
    )
    store = ArtifactStore(settings.storage_dir)
    writer = SnapshotWriter(manager, store, introspector, batch_size=settings.batch_size)
    restorer = SnapshotRestorer(manager, store, introspector)
    max_age = (
        timedelta(hours=settings.baseline_max_age_hours)
        if settings.baseline_max_age_hours
        else None
    )
    guard = DeploymentGuard(
        manager,
        writer,
        restorer,
        store,
        settings.stats_path,
        introspector=introspector,
        max_baseline_age=max_age,
    )
    ensurer = SchemaEnsurer(
        manager,
        introspector,
        initial_admin_password=settings.admin_password(),
    )
    logger.debug(
        "Services built (profile=%s, storage=%s)",
        settings.profile_name or "env",
        settings.storage_dir,
    )
    return PersistenceServices(
        settings=settings,
        manager=manager,
        introspector=introspector,
        store=store,
        writer=writer,
        restorer=restorer,
        guard=guard,
        ensurer=ensurer,
    )
