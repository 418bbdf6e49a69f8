"""Artifact storage directory.

``ArtifactStore`` names, publishes, lists, resolves and loads snapshot
artifacts in one directory. Files are published atomically: content goes to
a temporary file in the same directory, is flushed and fsynced, then renamed
into place. A reader never sees a partial artifact.

Artifact names embed the UTC creation time so they sort chronologically:
``backup-2026-10-19T08-30-00-123456Z.json``. Files written by the earlier
Node.js service (``backup-2024-03-01T10-00-00-000Z.json``) sort the same
way and are listed and loaded too.
"""

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from bakery_db.backup.models import (
    ArtifactInfo,
    ArtifactValidation,
    SnapshotArtifact,
)
from bakery_db.errors import ArtifactNotFoundError, InvalidArtifactError
from bakery_db.schema.identifiers import is_valid_identifier

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "backup-"
ARTIFACT_SUFFIX = ".json"


def artifact_name(now: datetime | None = None) -> str:
    """Build an artifact file name from a UTC timestamp."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return f"{ARTIFACT_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S-%f')}Z{ARTIFACT_SUFFIX}"


@contextmanager
def atomic_writer(path: Path) -> Iterator[IO[str]]:
    """Write *path* atomically via a sibling temp file and ``os.replace``.

    The temp file is removed if the block raises; *path* is then untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yield fh
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    with atomic_writer(path) as fh:
        json.dump(data, fh, ensure_ascii=False, indent=2)


def _timestamp_from_name(name: str) -> str | None:
    stem = name.removeprefix(ARTIFACT_PREFIX).removesuffix(ARTIFACT_SUFFIX)
    # Drop the collision suffix added by reserve_name ("...Z-1")
    stem = stem.rsplit("Z", 1)[0] + "Z" if "Z" in stem else stem
    try:
        parsed = datetime.strptime(stem, "%Y-%m-%dT%H-%M-%S-%fZ")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc).isoformat()


class ArtifactStore:
    """Directory of snapshot artifacts.

    Args:
        directory: Storage directory; created on first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def reserve_name(self, now: datetime | None = None) -> str:
        """Return an artifact name not yet used in the directory."""
        name = artifact_name(now)
        candidate = name
        counter = 1
        while (self.directory / candidate).exists():
            candidate = name.removesuffix(ARTIFACT_SUFFIX) + f"-{counter}{ARTIFACT_SUFFIX}"
            counter += 1
        return candidate

    @contextmanager
    def publish(self, name: str) -> Iterator[IO[str]]:
        """Yield a text handle; on clean exit the artifact appears as *name*."""
        with atomic_writer(self.directory / name) as fh:
            yield fh
        logger.info("Published artifact %s", name)

    # ------------------------------------------------------------------
    # Listing and lookup
    # ------------------------------------------------------------------

    def _info(self, path: Path) -> ArtifactInfo:
        stat = path.stat()
        return ArtifactInfo(
            name=path.name,
            path=str(path),
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def list_artifacts(self) -> list[ArtifactInfo]:
        """All artifacts, newest first. Empty if the directory is absent."""
        if not self.directory.is_dir():
            return []
        paths = [
            p
            for p in self.directory.glob(f"{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}")
            if p.is_file()
        ]
        return [self._info(p) for p in sorted(paths, key=lambda p: p.name, reverse=True)]

    def latest(self) -> ArtifactInfo | None:
        artifacts = self.list_artifacts()
        return artifacts[0] if artifacts else None

    def resolve(self, name: str | Path) -> Path:
        """Map a name (or a path inside the directory) to an existing file.

        Raises:
            InvalidArtifactError: The path escapes the storage directory or
                is not a ``.json`` file.
            ArtifactNotFoundError: No such artifact.
        """
        raw = Path(name)
        candidate = raw if raw.is_absolute() or raw.parent != Path(".") else self.directory / raw
        resolved = candidate.resolve()
        root = self.directory.resolve()
        if resolved.parent != root or resolved.suffix != ARTIFACT_SUFFIX:
            raise InvalidArtifactError(f"Not an artifact in {self.directory}: {name}")
        if not resolved.is_file():
            raise ArtifactNotFoundError(f"Artifact not found: {raw.name}")
        return resolved

    def info(self, name: str | Path) -> ArtifactInfo:
        return self._info(self.resolve(name))

    # ------------------------------------------------------------------
    # Loading and validation
    # ------------------------------------------------------------------

    def load(self, name: str | Path) -> SnapshotArtifact:
        """Read and parse an artifact (current or legacy layout).

        Raises:
            InvalidArtifactError: Unreadable JSON or unknown layout.
            ArtifactNotFoundError: No such artifact.
        """
        path = self.resolve(name)
        return load_artifact_file(path)

    def validate(self, name: str | Path) -> ArtifactValidation:
        """Check an artifact's structure without touching the database."""
        try:
            artifact = self.load(name)
        except (InvalidArtifactError, ArtifactNotFoundError) as exc:
            return ArtifactValidation(valid=False, errors=[str(exc)])
        return validate_artifact(artifact)


def load_artifact_file(path: Path) -> SnapshotArtifact:
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise InvalidArtifactError(f"Cannot read artifact {path.name}: {exc}") from exc
    return parse_artifact(data, name=path.name, fallback_mtime=path.stat().st_mtime)


def parse_artifact(
    data: Any, name: str | None = None, fallback_mtime: float | None = None
) -> SnapshotArtifact:
    """Build a ``SnapshotArtifact`` from decoded JSON.

    Accepts ``{"timestamp", "tables", "metadata"}`` and the legacy flat
    ``{table: [rows]}`` layout.
    """
    if not isinstance(data, dict):
        raise InvalidArtifactError("Artifact root must be a JSON object")

    if isinstance(data.get("tables"), dict) and "timestamp" in data:
        tables, timestamp, metadata, legacy = (
            data["tables"],
            str(data["timestamp"]),
            data.get("metadata") or {},
            False,
        )
    elif all(isinstance(v, list) for v in data.values()):
        timestamp = (_timestamp_from_name(name) if name else None) or (
            datetime.fromtimestamp(fallback_mtime or 0, tz=timezone.utc).isoformat()
        )
        tables, metadata, legacy = data, {}, True
    else:
        raise InvalidArtifactError("Unrecognized artifact layout")

    for table, rows in tables.items():
        if not isinstance(rows, list):
            raise InvalidArtifactError(f"Rows for table {table!r} must be a list")
        if any(not isinstance(row, dict) for row in rows):
            raise InvalidArtifactError(f"Rows for table {table!r} must be objects")

    return SnapshotArtifact(
        timestamp=timestamp, tables=tables, metadata=metadata, name=name, legacy=legacy
    )


def validate_artifact(artifact: SnapshotArtifact) -> ArtifactValidation:
    errors: list[str] = []
    warnings: list[str] = []

    if artifact.legacy:
        warnings.append("Legacy artifact layout (no metadata)")

    expected_counts = artifact.metadata.get("row_counts", {})
    for table, rows in artifact.tables.items():
        if not is_valid_identifier(table):
            errors.append(f"Invalid table name: {table!r}")
            continue
        bad_columns = sorted(
            {col for row in rows for col in row if not is_valid_identifier(col)}
        )
        if bad_columns:
            errors.append(f"Invalid column names in {table}: {bad_columns}")
        if not rows:
            warnings.append(f"Table {table} has no rows")
        if table in expected_counts and expected_counts[table] != len(rows):
            errors.append(
                f"Row count mismatch for {table}: metadata says "
                f"{expected_counts[table]}, file has {len(rows)}"
            )

    if not artifact.tables:
        warnings.append("Artifact contains no tables")

    return ArtifactValidation(valid=not errors, errors=errors, warnings=warnings)
