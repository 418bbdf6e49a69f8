"""Snapshot artifacts: writing, storage, and transactional restore."""

from bakery_db.backup.models import RestoreReport, RestoreStatus, SnapshotArtifact
from bakery_db.backup.restorer import SnapshotRestorer
from bakery_db.backup.storage import ArtifactStore
from bakery_db.backup.writer import SnapshotWriter

__all__ = [
    "ArtifactStore",
    "RestoreReport",
    "RestoreStatus",
    "SnapshotArtifact",
    "SnapshotRestorer",
    "SnapshotWriter",
]
