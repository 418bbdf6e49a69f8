"""bakery-db: snapshot, restore and deployment guard for the bakery database.

Provides a pooled async connection manager, schema introspection, JSON
snapshot artifacts with transactional restore, a row-count deployment
guard, and idempotent creation and seeding of the application tables.

Usage:
    from bakery_db import load_settings, build_services

    async with build_services(load_settings()) as services:
        info = await services.writer.create_snapshot()
        report = await services.restorer.restore(info.name)
"""

__version__ = "0.1.0"

# Adapters
from bakery_db.adapters.base import DatabaseClient, QueryResult
from bakery_db.adapters.pool import ConnectionManager

# Config
from bakery_db.config.loader import load_db_config, load_settings, resolve_url
from bakery_db.config.models import DatabaseConfig, DatabaseProfile, PersistenceSettings

# Components
from bakery_db.backup.restorer import SnapshotRestorer
from bakery_db.backup.storage import ArtifactStore
from bakery_db.backup.writer import SnapshotWriter
from bakery_db.deploy.guard import DeploymentGuard
from bakery_db.schema.ensure import SchemaEnsurer
from bakery_db.schema.introspector import SchemaIntrospector

# Factory
from bakery_db.factory import PersistenceServices, build_services

# Errors
from bakery_db.errors import (
    DataLossDetected,
    DatabaseConnectionError,
    InvalidIdentifierError,
    NoTablesError,
    PersistenceError,
    RestoreError,
    SnapshotError,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "QueryResult",
    "ConnectionManager",
    # Config
    "load_db_config",
    "load_settings",
    "resolve_url",
    "DatabaseConfig",
    "DatabaseProfile",
    "PersistenceSettings",
    # Components
    "ArtifactStore",
    "SchemaIntrospector",
    "SnapshotWriter",
    "SnapshotRestorer",
    "DeploymentGuard",
    "SchemaEnsurer",
    # Factory
    "PersistenceServices",
    "build_services",
    # Errors
    "PersistenceError",
    "DatabaseConnectionError",
    "InvalidIdentifierError",
    "NoTablesError",
    "SnapshotError",
    "RestoreError",
    "DataLossDetected",
]
