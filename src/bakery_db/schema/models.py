"""Pydantic models for schema introspection and validation."""

from pydantic import BaseModel, Field


# ============================================================================
# Introspection Models
# ============================================================================


class TableDescriptor(BaseModel):
    """A base table in the working schema. ``name`` is always a valid identifier."""

    name: str
    schema_name: str = "public"


class ColumnSchema(BaseModel):
    """Schema for a database column."""

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None
    position: int = 0

    @property
    def is_serial(self) -> bool:
        """True if the column draws its default from a sequence."""
        return bool(self.default and self.default.startswith("nextval("))


class DatabaseInfo(BaseModel):
    """Identity of the connected database, as shown by ``/api/db-status``."""

    name: str
    user: str
    server_time: str
    tables_count: int = 0


# ============================================================================
# Validation Result Models
# ============================================================================


class ColumnDiff(BaseModel):
    """A missing column detected during validation."""

    table: str
    column: str
    message: str = ""


class SchemaValidationResult(BaseModel):
    """Result of comparing live columns with the expected column set."""

    valid: bool
    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)
    extra_tables: list[str] = Field(default_factory=list)  # Warning only

    @property
    def error_count(self) -> int:
        return len(self.missing_tables) + len(self.missing_columns)

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if self.valid:
            return "Schema valid"

        lines = ["Schema validation failed:"]

        if self.missing_tables:
            lines.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            for table in self.missing_tables:
                lines.append(f"    - {table}")

        if self.missing_columns:
            lines.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            for diff in self.missing_columns:
                lines.append(f"    - {diff.table}.{diff.column}")

        return "\n".join(lines)


# ============================================================================
# Ensure / Seed Results
# ============================================================================


class EnsureResult(BaseModel):
    """Outcome of ``SchemaEnsurer.ensure_schema()``."""

    created_tables: list[str] = Field(default_factory=list)
    added_columns: list[ColumnDiff] = Field(default_factory=list)
    skipped_columns: list[ColumnDiff] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created_tables or self.added_columns)


class SeedResult(BaseModel):
    """Outcome of ``SchemaEnsurer.seed_minimum_data()``.

    ``one_time_password`` is set only when the administrator was created
    with a generated credential. It is not stored anywhere else.
    """

    admin_created: bool = False
    admin_username: str | None = None
    one_time_password: str | None = None
    branch_created: bool = False
