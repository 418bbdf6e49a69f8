"""Pydantic models for the deployment guard."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from bakery_db.backup.models import RestoreReport
from bakery_db.errors import DataLossDetected


class GuardState(str, Enum):
    IDLE = "idle"
    PRE_CHECK = "pre_check"
    AWAITING_DEPLOY = "awaiting_deploy"
    POST_CHECK = "post_check"
    VERIFIED = "verified"
    LOSS_DETECTED = "loss_detected"
    STALE = "stale"


class BaselineRecord(BaseModel):
    """Pre-deploy row counts, persisted to the side-channel stats file."""

    captured_at: datetime
    counts: dict[str, int] = Field(default_factory=dict)
    artifact: str | None = None


class BaselineResult(BaseModel):
    """Outcome of ``DeploymentGuard.capture_baseline()``."""

    state: GuardState
    counts: dict[str, int] = Field(default_factory=dict)
    artifact: str | None = None
    snapshot_error: str | None = None


class TableRegression(BaseModel):
    """A table whose row count dropped across a deployment."""

    table: str
    before: int
    after: int
    missing: bool = False

    @property
    def lost(self) -> int:
        return self.before - self.after


class VerificationResult(BaseModel):
    """Outcome of ``DeploymentGuard.verify_after_deploy()``."""

    state: GuardState
    regressions: list[TableRegression] = Field(default_factory=list)
    before: dict[str, int] = Field(default_factory=dict)
    after: dict[str, int] = Field(default_factory=dict)
    artifact: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.state != GuardState.LOSS_DETECTED

    def raise_for_loss(self) -> None:
        """Raise ``DataLossDetected`` if any table regressed."""
        if self.regressions:
            raise DataLossDetected(self.regressions)


class EmptyRestoreResult(BaseModel):
    """Outcome of ``DeploymentGuard.restore_if_empty()``."""

    restored: bool
    reason: str
    artifact: str | None = None
    report: RestoreReport | None = None
