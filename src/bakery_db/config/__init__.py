"""Configuration loading and models."""

from bakery_db.config.loader import (
    get_active_profile_name,
    load_db_config,
    load_settings,
    resolve_url,
)
from bakery_db.config.models import DatabaseConfig, DatabaseProfile, PersistenceSettings

__all__ = [
    "DatabaseConfig",
    "DatabaseProfile",
    "PersistenceSettings",
    "get_active_profile_name",
    "load_db_config",
    "load_settings",
    "resolve_url",
]
