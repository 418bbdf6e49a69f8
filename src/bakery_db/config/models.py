"""Pydantic models for database profiles and persistence settings."""

from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bakery_db.schema.identifiers import validate_identifier
from bakery_db.schema.introspector import DEFAULT_EXCLUDED_TABLES


# ============================================================================
# db.toml Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"


class DatabaseConfig(BaseModel):
    """Parsed db.toml: named profiles plus the ``[persistence]`` table."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    persistence: dict = Field(default_factory=dict)


# ============================================================================
# Runtime Settings
# ============================================================================


class PersistenceSettings(BaseSettings):
    """Settings for snapshot, restore and the deployment guard.

    Values come from (highest first) environment variables, the
    ``[persistence]`` table of db.toml, then the defaults below.
    ``DATABASE_URL`` and ``DATA_PERSISTENCE_DIR`` keep the names the
    hosting platform already sets.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    database_url: str | None = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL", "database_url")
    )
    profile_name: str | None = None

    # Artifact directory and the pre-deploy stats record inside it
    storage_dir: Path = Field(
        default=Path("./db-backups"),
        validation_alias=AliasChoices("DATA_PERSISTENCE_DIR", "storage_dir"),
    )
    stats_file: str = "pre_deploy_stats.json"

    schema_name: str = "public"
    excluded_tables: list[str] = Field(default_factory=lambda: sorted(DEFAULT_EXCLUDED_TABLES))

    # Seconds
    connect_timeout: float = Field(default=5, gt=0)
    statement_timeout: float = Field(default=30, gt=0)
    lock_timeout: float = Field(default=10, gt=0)

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    batch_size: int = Field(default=500, ge=1)

    # Baselines older than this verify as stale; 0 disables the check
    baseline_max_age_hours: float = Field(default=24, ge=0)

    initial_admin_password: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("INITIAL_ADMIN_PASSWORD", "initial_admin_password"),
    )

    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    log_format: str = Field(default="text", validation_alias=AliasChoices("LOG_FORMAT", "log_format"))

    host: str = "0.0.0.0"
    port: int = Field(default=5000, validation_alias=AliasChoices("PORT", "port"))

    @field_validator("schema_name")
    @classmethod
    def _schema_is_identifier(cls, value: str) -> str:
        return validate_identifier(value)

    @field_validator("log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def stats_path(self) -> Path:
        return self.storage_dir / self.stats_file

    def admin_password(self) -> str | None:
        if self.initial_admin_password is None:
            return None
        return self.initial_admin_password.get_secret_value()
