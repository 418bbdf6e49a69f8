"""Full deploy-time persistence cycle.

Runs, in order: connection check, baseline capture, schema ensure,
restore-if-empty, seeding, and post-deploy verification. This is what the
service runs at startup after every redeploy.
"""

import logging

from pydantic import BaseModel

from bakery_db.backup.models import RestoreReport
from bakery_db.deploy.models import (
    BaselineResult,
    EmptyRestoreResult,
    VerificationResult,
)
from bakery_db.errors import DatabaseConnectionError
from bakery_db.factory import PersistenceServices
from bakery_db.schema.models import EnsureResult, SeedResult

logger = logging.getLogger(__name__)


class DeployCycleResult(BaseModel):
    baseline: BaselineResult
    ensure: EnsureResult
    empty_restore: EmptyRestoreResult
    seed: SeedResult
    verification: VerificationResult
    loss_restore: RestoreReport | None = None

    @property
    def data_loss(self) -> bool:
        return not self.verification.ok


async def run_deploy_cycle(
    services: PersistenceServices, restore_on_loss: bool = False
) -> DeployCycleResult:
    """Run the deploy cycle against *services*.

    Args:
        services: Wired components.
        restore_on_loss: If verification detects loss and the baseline
            snapshot exists, restore it. Off by default; the operator
            decides.

    Raises:
        DatabaseConnectionError: The database is unreachable.
        RestoreError: A restore step failed and was rolled back.
    """
    if not await services.manager.test_connection():
        raise DatabaseConnectionError("Database connection test failed")

    guard = services.guard
    baseline = await guard.capture_baseline()
    ensure = await services.ensurer.ensure_schema()
    empty_restore = await guard.restore_if_empty()
    seed = await services.ensurer.seed_minimum_data()
    verification = await guard.verify_after_deploy()

    loss_restore = None
    if verification.regressions and restore_on_loss:
        if verification.artifact:
            logger.warning("Restoring baseline snapshot %s after data loss", verification.artifact)
            loss_restore = await services.restorer.restore(verification.artifact)
        else:
            logger.error("Data loss detected but no baseline snapshot to restore")

    return DeployCycleResult(
        baseline=baseline,
        ensure=ensure,
        empty_restore=empty_restore,
        seed=seed,
        verification=verification,
        loss_restore=loss_restore,
    )
