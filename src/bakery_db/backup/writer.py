"""Snapshot writer.

Copies every base table of the working schema into one timestamped JSON
artifact. All tables are read inside a single read-only transaction
(``REPEATABLE READ`` on PostgreSQL), so the artifact is a consistent
point-in-time copy. Rows are streamed in batches straight into the
artifact's temp file and the file is published only when every table has
been written.

Usage:
    writer = SnapshotWriter(manager, ArtifactStore("./db-backups"))
    info = await writer.create_snapshot()
    print(info.name, info.row_counts)
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import IO

from bakery_db.adapters.pool import ConnectionManager, Transaction
from bakery_db.backup.codec import encode_row
from bakery_db.backup.models import ARTIFACT_VERSION, ArtifactInfo
from bakery_db.backup.storage import ArtifactStore
from bakery_db.errors import (
    NoTablesError,
    PersistenceError,
    SnapshotError,
)
from bakery_db.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


class SnapshotWriter:
    """Writes snapshot artifacts of the working schema.

    Args:
        manager: Connection manager for the source database.
        store: Destination artifact store.
        introspector: Introspector carrying the working schema name and
            excluded tables; bound to the snapshot transaction on use.
        batch_size: Rows fetched per round trip while streaming a table.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        store: ArtifactStore,
        introspector: SchemaIntrospector | None = None,
        batch_size: int = 500,
    ) -> None:
        self._manager = manager
        self._store = store
        self._introspector = introspector or SchemaIntrospector(manager)
        self._batch_size = batch_size

    async def create_snapshot(self) -> ArtifactInfo:
        """Snapshot all base tables into a new artifact.

        Returns:
            ``ArtifactInfo`` of the published artifact, with row counts.

        Raises:
            NoTablesError: The schema has no base tables; nothing is written.
            SnapshotError: A table could not be read or the file could not be
                published; no artifact is left behind.
            DatabaseConnectionError: The store is unreachable.
        """
        started = time.perf_counter()
        async with self._manager.transaction(read_only=True) as tx:
            introspector = self._introspector.bind(tx)
            tables = await introspector.table_names()
            if not tables:
                raise NoTablesError(introspector.schema_name)

            created = datetime.now(timezone.utc)
            name = self._store.reserve_name(created)
            row_counts: dict[str, int] = {}
            current: str | None = None
            try:
                with self._store.publish(name) as fh:
                    fh.write(f'{{"timestamp": {_dump(created.isoformat())}, "tables": {{')
                    for index, table in enumerate(tables):
                        current = table
                        if index:
                            fh.write(", ")
                        fh.write(f"{_dump(table)}: [")
                        row_counts[table] = await self._write_table(
                            tx, introspector, table, fh
                        )
                        fh.write("]")
                    current = None
                    metadata = {
                        "version": ARTIFACT_VERSION,
                        "schema": introspector.schema_name,
                        "row_counts": row_counts,
                    }
                    fh.write(f'}}, "metadata": {_dump(metadata)}}}\n')
            except (PersistenceError, OSError, ValueError) as exc:
                logger.error(
                    "Snapshot %s failed on table %s: %s",
                    name,
                    current,
                    exc,
                    extra={"artifact": name, "table": current},
                )
                raise SnapshotError(current, exc) from exc

        info = self._store.info(name)
        info.row_counts = row_counts
        logger.info(
            "Snapshot %s written: %d tables, %d rows",
            name,
            len(row_counts),
            sum(row_counts.values()),
            extra={
                "artifact": name,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return info

    async def _write_table(
        self,
        tx: Transaction,
        introspector: SchemaIntrospector,
        table: str,
        fh: IO[str],
    ) -> int:
        types = {c.name: c.data_type for c in await introspector.get_columns(table)}
        sql = f"SELECT * FROM {introspector.qualified_name(table)}"

        count = 0
        async for batch in tx.stream(sql, batch_size=self._batch_size):
            for row in batch:
                if count:
                    fh.write(", ")
                fh.write(_dump(encode_row(row, types)))
                count += 1
        logger.debug("Snapshot table %s: %d rows", table, count, extra={"table": table})
        return count
