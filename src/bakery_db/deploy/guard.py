"""Deployment guard.

Brackets a deployment with row-count checks. Before the deployment,
``capture_baseline()`` takes a best-effort snapshot and records the row
count of every base table in a side-channel stats file. After it,
``verify_after_deploy()`` re-counts and reports every table whose count
dropped.

State machine::

    idle -> pre_check -> awaiting_deploy -> post_check -> verified
                                                       -> loss_detected
                                                       -> stale

The stats record is written atomically and overwritten by every capture. It
is deleted only after a clean verification, so a detected loss can be
re-inspected. A missing, unreadable or expired record verifies as ``stale``
rather than raising.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from bakery_db.adapters.pool import ConnectionManager
from bakery_db.backup.models import SnapshotArtifact
from bakery_db.backup.restorer import SnapshotRestorer
from bakery_db.backup.storage import ArtifactStore, write_json_atomic
from bakery_db.backup.writer import SnapshotWriter
from bakery_db.deploy.models import (
    BaselineRecord,
    BaselineResult,
    EmptyRestoreResult,
    GuardState,
    TableRegression,
    VerificationResult,
)
from bakery_db.errors import ArtifactError, PersistenceError
from bakery_db.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentGuard:
    """Detects row loss across a deployment.

    Args:
        manager: Connection manager for the guarded database.
        writer: Snapshot writer used for the pre-deploy snapshot.
        restorer: Restorer used by ``restore_if_empty``.
        store: Artifact store searched by ``restore_if_empty``.
        stats_path: Location of the pre-deploy statistics record.
        introspector: Introspector carrying schema name and exclusions.
        max_baseline_age: Records older than this verify as ``stale``.
            None disables the age check.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        writer: SnapshotWriter,
        restorer: SnapshotRestorer,
        store: ArtifactStore,
        stats_path: str | Path,
        introspector: SchemaIntrospector | None = None,
        max_baseline_age: timedelta | None = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._manager = manager
        self._writer = writer
        self._restorer = restorer
        self._store = store
        self.stats_path = Path(stats_path)
        self._introspector = introspector or SchemaIntrospector(manager)
        self._max_age = max_baseline_age
        self._clock = clock
        self._state = GuardState.IDLE

    @property
    def state(self) -> GuardState:
        return self._state

    async def _row_counts(self) -> dict[str, int]:
        async with self._manager.transaction(read_only=True) as tx:
            return await self._introspector.bind(tx).get_row_counts()

    # ------------------------------------------------------------------
    # Pre-deploy
    # ------------------------------------------------------------------

    async def capture_baseline(self) -> BaselineResult:
        """Snapshot (best-effort) and record per-table row counts.

        Raises:
            DatabaseConnectionError: Row counts could not be read. State
                returns to ``idle`` and no record is written.
        """
        self._state = GuardState.PRE_CHECK

        artifact: str | None = None
        snapshot_error: str | None = None
        try:
            try:
                artifact = (await self._writer.create_snapshot()).name
            except (PersistenceError, OSError) as exc:
                snapshot_error = str(exc)
                logger.warning("Pre-deploy snapshot skipped: %s", exc)

            counts = await self._row_counts()
            record = BaselineRecord(
                captured_at=self._clock(), counts=counts, artifact=artifact
            )
            write_json_atomic(self.stats_path, record.model_dump(mode="json"))
        except BaseException:
            self._state = GuardState.IDLE
            raise

        self._state = GuardState.AWAITING_DEPLOY
        logger.info(
            "Baseline captured: %d tables, %d rows -> %s",
            len(counts),
            sum(counts.values()),
            self.stats_path,
            extra={"state": self._state.value, "artifact": artifact},
        )
        return BaselineResult(
            state=self._state,
            counts=counts,
            artifact=artifact,
            snapshot_error=snapshot_error,
        )

    def load_baseline(self) -> BaselineRecord | None:
        """Read the stats record; None if absent or unreadable.

        Accepts the legacy flat ``{table: count}`` layout, dated by the file
        modification time.
        """
        try:
            data = json.loads(self.stats_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable baseline record %s: %s", self.stats_path, exc)
            return None

        try:
            if isinstance(data, dict) and "counts" in data:
                return BaselineRecord.model_validate(data)
            if isinstance(data, dict) and all(
                isinstance(v, int) and not isinstance(v, bool) for v in data.values()
            ):
                mtime = self.stats_path.stat().st_mtime
                return BaselineRecord(
                    captured_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    counts=data,
                )
        except (ValidationError, OSError) as exc:
            logger.warning("Invalid baseline record %s: %s", self.stats_path, exc)
            return None
        logger.warning("Unrecognized baseline record layout in %s", self.stats_path)
        return None

    def clear_baseline(self) -> None:
        self.stats_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Post-deploy
    # ------------------------------------------------------------------

    async def verify_after_deploy(self) -> VerificationResult:
        """Compare current row counts with the recorded baseline.

        Returns:
            ``VerificationResult`` in state ``verified``, ``loss_detected``
            (with regressions) or ``stale``. Never raises on a missing or
            stale record.

        Raises:
            DatabaseConnectionError: Current counts could not be read.
        """
        self._state = GuardState.POST_CHECK
        record = self.load_baseline()
        if record is None:
            self._state = GuardState.STALE
            logger.warning("No usable baseline record; skipping loss check")
            return VerificationResult(state=self._state, reason="no baseline record")

        captured_at = record.captured_at
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        age = self._clock() - captured_at
        if self._max_age is not None and age > self._max_age:
            self._state = GuardState.STALE
            logger.warning("Baseline record is %s old; ignoring it", age)
            return VerificationResult(
                state=self._state,
                before=record.counts,
                artifact=record.artifact,
                reason=f"baseline captured {age} ago",
            )

        current = await self._row_counts()
        after: dict[str, int] = {}
        regressions: list[TableRegression] = []
        for table, before in sorted(record.counts.items()):
            missing = table not in current
            now = current.get(table, 0)
            after[table] = now
            if now < before:
                regressions.append(
                    TableRegression(table=table, before=before, after=now, missing=missing)
                )

        if regressions:
            self._state = GuardState.LOSS_DETECTED
            for r in regressions:
                logger.error(
                    "Data loss in %s: %d -> %d rows%s",
                    r.table,
                    r.before,
                    r.after,
                    " (table missing)" if r.missing else "",
                    extra={"table": r.table, "state": self._state.value},
                )
        else:
            self._state = GuardState.VERIFIED
            self.clear_baseline()
            logger.info("Deployment verified: no row loss in %d tables", len(after))

        return VerificationResult(
            state=self._state,
            regressions=regressions,
            before=record.counts,
            after=after,
            artifact=record.artifact,
        )

    # ------------------------------------------------------------------
    # Empty-database recovery
    # ------------------------------------------------------------------

    async def is_database_empty(self) -> bool:
        """True if every base table has zero rows (or there are none)."""
        counts = await self._row_counts()
        return all(count == 0 for count in counts.values())

    async def _recovery_artifact(self) -> SnapshotArtifact | None:
        """Newest readable artifact that holds at least one row.

        Snapshots of empty tables, such as the baseline taken just before
        an empty database is recovered, are passed over.
        """
        for info in self._store.list_artifacts():
            try:
                candidate = await asyncio.to_thread(self._store.load, info.name)
            except ArtifactError as exc:
                logger.warning("Skipping unreadable artifact %s: %s", info.name, exc)
                continue
            if any(candidate.tables.values()):
                return candidate
            logger.info("Skipping %s: no rows", info.name, extra={"artifact": info.name})
        return None

    async def restore_if_empty(
        self, artifact: str | Path | SnapshotArtifact | None = None
    ) -> EmptyRestoreResult:
        """Restore into an empty database only.

        Args:
            artifact: Artifact to restore. Defaults to the newest artifact
                that contains rows.

        Raises:
            RestoreError: The restore failed and was rolled back.
        """
        if not await self.is_database_empty():
            return EmptyRestoreResult(restored=False, reason="database is not empty")

        if artifact is None:
            artifact = await self._recovery_artifact()
            if artifact is None:
                logger.info("Database is empty and no artifact with rows is available")
                return EmptyRestoreResult(restored=False, reason="no artifact available")

        if isinstance(artifact, SnapshotArtifact):
            name = artifact.name or "unnamed artifact"
        else:
            name = str(artifact)
        logger.info("Database is empty; restoring %s", name, extra={"artifact": name})
        report = await self._restorer.restore(artifact)
        if not report.restored_tables:
            logger.warning("Artifact %s restored no tables", name, extra={"artifact": name})
            return EmptyRestoreResult(
                restored=False,
                reason="artifact restored no tables",
                artifact=report.artifact or name,
                report=report,
            )
        return EmptyRestoreResult(
            restored=True,
            reason="database was empty",
            artifact=report.artifact or name,
            report=report,
        )
