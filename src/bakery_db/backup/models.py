"""Pydantic models for snapshot artifacts and restore reports."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

ARTIFACT_VERSION = "2"


class SnapshotArtifact(BaseModel):
    """A loaded snapshot artifact.

    ``tables`` maps table name to an ordered list of row mappings. ``legacy``
    is True when the file used the old flat ``{table: rows}`` layout.
    """

    timestamp: str
    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    name: str | None = None
    legacy: bool = False

    @property
    def row_counts(self) -> dict[str, int]:
        return {table: len(rows) for table, rows in self.tables.items()}


class ArtifactInfo(BaseModel):
    """A published artifact on disk, as listed by ``/api/db-backups``."""

    name: str
    path: str
    size: int
    created_at: datetime
    row_counts: dict[str, int] = Field(default_factory=dict)


class ArtifactValidation(BaseModel):
    """Structural check of an artifact before it is restored."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RestoreStatus(str, Enum):
    RESTORED = "restored"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_MISSING_TABLE = "skipped_missing_table"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class TableOutcome(BaseModel):
    """What happened to one artifact table during a restore."""

    table: str
    status: RestoreStatus
    rows: int = 0
    cause: str | None = None
    dropped_columns: list[str] = Field(default_factory=list)


class RestoreReport(BaseModel):
    """Per-table outcome of one restore call."""

    artifact: str | None = None
    outcomes: list[TableOutcome] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(o.status == RestoreStatus.FAILED for o in self.outcomes)

    @property
    def restored_tables(self) -> list[str]:
        return [o.table for o in self.outcomes if o.status == RestoreStatus.RESTORED]

    def outcome(self, table: str) -> TableOutcome | None:
        for item in self.outcomes:
            if item.table == table:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["success"] = self.success
        return data
