"""Snapshot restorer.

Replaces the contents of live tables with the rows captured in an artifact,
all inside one transaction: every target table is cleared first, then rows
are inserted parents-first. Any failure rolls the whole restore back, so
the database is left exactly as it was before the call.

Usage:
    restorer = SnapshotRestorer(manager, store)
    report = await restorer.restore("backup-2026-10-19T08-30-00-123456Z.json")
    for outcome in report.outcomes:
        print(outcome.table, outcome.status, outcome.rows)
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from bakery_db.adapters.pool import ConnectionManager, Transaction
from bakery_db.backup.codec import decode_row
from bakery_db.backup.models import (
    RestoreReport,
    RestoreStatus,
    SnapshotArtifact,
    TableOutcome,
)
from bakery_db.backup.storage import ArtifactStore
from bakery_db.errors import RestoreError
from bakery_db.schema.identifiers import quote_identifier, validate_identifier
from bakery_db.schema.introspector import SchemaIntrospector
from bakery_db.schema.models import ColumnSchema

logger = logging.getLogger(__name__)


def topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Cycles are broken at the point of detection.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: Table names to sort.

    Example:
        >>> topological_sort({"orders": {"users"}}, ["orders", "users"])
        ['users', 'orders']
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()  # For cycle detection

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


def dependents_closure(dependencies: dict[str, set[str]], tables: set[str]) -> set[str]:
    """All tables that reference *tables*, directly or transitively."""
    closure = set(tables)
    changed = True
    while changed:
        changed = False
        for table, refs in dependencies.items():
            if table not in closure and refs & closure:
                closure.add(table)
                changed = True
    return closure


def _artifact_columns(rows: list[dict[str, Any]]) -> list[str]:
    seen: dict[str, None] = {}
    for row in rows:
        for col in row:
            seen.setdefault(col, None)
    return list(seen)


class SnapshotRestorer:
    """Restores snapshot artifacts into the live database.

    Args:
        manager: Connection manager for the target database.
        store: Artifact store used to resolve artifact names.
        introspector: Introspector carrying schema name and exclusions.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        store: ArtifactStore,
        introspector: SchemaIntrospector | None = None,
    ) -> None:
        self._manager = manager
        self._store = store
        self._introspector = introspector or SchemaIntrospector(manager)

    async def restore(self, artifact: SnapshotArtifact | str | Path) -> RestoreReport:
        """Restore *artifact* (loaded, or a name/path in the store).

        Returns:
            ``RestoreReport`` with one outcome per artifact table.

        Raises:
            InvalidIdentifierError: An artifact table or column name is unsafe.
                Raised before any database work.
            ArtifactNotFoundError / InvalidArtifactError: Artifact unreadable.
            RestoreError: Any failure once the transaction began. The
                transaction is rolled back and ``exc.report`` marks the failed
                table.
        """
        if not isinstance(artifact, SnapshotArtifact):
            artifact = await asyncio.to_thread(self._store.load, artifact)

        for table, rows in artifact.tables.items():
            validate_identifier(table)
            for col in _artifact_columns(rows):
                validate_identifier(col)

        report = RestoreReport(artifact=artifact.name)
        started = time.perf_counter()
        current: str | None = None
        try:
            async with self._manager.transaction() as tx:
                introspector = self._introspector.bind(tx)
                live = set(await introspector.table_names())

                targets: list[str] = []
                for table, rows in artifact.tables.items():
                    if table not in live:
                        logger.warning(
                            "Skipping %s: table not in live schema", table, extra={"table": table}
                        )
                        report.outcomes.append(
                            TableOutcome(table=table, status=RestoreStatus.SKIPPED_MISSING_TABLE)
                        )
                    elif not rows:
                        report.outcomes.append(
                            TableOutcome(table=table, status=RestoreStatus.SKIPPED_EMPTY)
                        )
                    else:
                        targets.append(table)

                if targets:
                    dependencies = await introspector.get_foreign_keys()
                    order = topological_sort(dependencies, sorted(targets))
                    await self._clear(tx, introspector, dependencies, order)
                    for table in order:
                        current = table
                        outcome = await self._insert_table(
                            tx, introspector, table, artifact.tables[table]
                        )
                        report.outcomes.append(outcome)
                    current = None
        except Exception as exc:
            failed = self._failure_report(report, artifact, current, exc)
            logger.error(
                "Restore of %s rolled back: %s",
                artifact.name,
                exc,
                extra={"artifact": artifact.name, "table": current},
            )
            raise RestoreError(current, exc, failed) from exc

        logger.info(
            "Restored %s: %d tables, %d rows",
            artifact.name or artifact.timestamp,
            len(report.restored_tables),
            sum(o.rows for o in report.outcomes if o.status == RestoreStatus.RESTORED),
            extra={
                "artifact": artifact.name,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return report

    async def _clear(
        self,
        tx: Transaction,
        introspector: SchemaIntrospector,
        dependencies: dict[str, set[str]],
        order: list[str],
    ) -> None:
        cascaded = dependents_closure(dependencies, set(order)) - set(order)
        if cascaded:
            logger.warning(
                "Clearing dependent tables not in artifact: %s", ", ".join(sorted(cascaded))
            )

        if tx.dialect_name == "postgresql":
            names = ", ".join(introspector.qualified_name(t) for t in order)
            await tx.execute(f"TRUNCATE TABLE {names} CASCADE")
            return

        # No TRUNCATE ... CASCADE here; delete children before parents
        everything = topological_sort(dependencies, sorted(set(order) | cascaded))
        for table in reversed(everything):
            await tx.execute(f"DELETE FROM {introspector.qualified_name(table)}")

    async def _insert_table(
        self,
        tx: Transaction,
        introspector: SchemaIntrospector,
        table: str,
        rows: list[dict[str, Any]],
    ) -> TableOutcome:
        live_columns = await introspector.get_columns(table)
        types = {c.name: c.data_type for c in live_columns}
        by_lower = {c.name.lower(): c.name for c in live_columns}

        mapping: dict[str, str] = {}
        dropped: list[str] = []
        for col in _artifact_columns(rows):
            target = col if col in types else by_lower.get(col.lower())
            if target is None:
                dropped.append(col)
            else:
                mapping[col] = target
        if dropped:
            logger.warning(
                "Table %s: dropping columns absent from live schema: %s",
                table,
                dropped,
                extra={"table": table},
            )

        # Rows with different key sets get separate statements so absent
        # keys fall back to column defaults instead of NULL.
        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for row in rows:
            cols = tuple(mapping[c] for c in row if c in mapping)
            values = {mapping[c]: v for c, v in row.items() if c in mapping}
            groups.setdefault(cols, []).append(decode_row(values, types, tx.dialect_name))

        qualified = introspector.qualified_name(table)
        for cols, group in groups.items():
            if not cols:
                sql = f"INSERT INTO {qualified} DEFAULT VALUES"
                for _ in group:
                    await tx.execute(sql)
                continue
            placeholders = ", ".join(f":p{i}" for i in range(len(cols)))
            column_list = ", ".join(quote_identifier(c) for c in cols)
            params = [{f"p{i}": row[c] for i, c in enumerate(cols)} for row in group]
            await tx.execute_many(
                f"INSERT INTO {qualified} ({column_list}) VALUES ({placeholders})", params
            )

        if tx.dialect_name == "postgresql":
            await self._resync_sequences(tx, introspector, table, live_columns)

        return TableOutcome(
            table=table,
            status=RestoreStatus.RESTORED,
            rows=len(rows),
            dropped_columns=dropped,
        )

    async def _resync_sequences(
        self,
        tx: Transaction,
        introspector: SchemaIntrospector,
        table: str,
        columns: list[ColumnSchema],
    ) -> None:
        qualified = introspector.qualified_name(table)
        for column in columns:
            if not column.is_serial:
                continue
            col = quote_identifier(column.name)
            await tx.execute(
                f"SELECT setval(pg_get_serial_sequence(:table, :column), "
                f"COALESCE(MAX({col}), 1), MAX({col}) IS NOT NULL) FROM {qualified}",
                {"table": qualified, "column": column.name},
            )

    @staticmethod
    def _failure_report(
        partial: RestoreReport,
        artifact: SnapshotArtifact,
        failed_table: str | None,
        exc: BaseException,
    ) -> RestoreReport:
        outcomes: list[TableOutcome] = []
        reported = set()
        for outcome in partial.outcomes:
            reported.add(outcome.table)
            if outcome.status == RestoreStatus.RESTORED:
                outcome = outcome.model_copy(update={"status": RestoreStatus.ROLLED_BACK})
            outcomes.append(outcome)
        for table, rows in artifact.tables.items():
            if table in reported:
                continue
            if table == failed_table:
                outcomes.append(
                    TableOutcome(
                        table=table, status=RestoreStatus.FAILED, rows=len(rows), cause=str(exc)
                    )
                )
            else:
                outcomes.append(TableOutcome(table=table, status=RestoreStatus.ROLLED_BACK))
        if failed_table is None:
            outcomes.append(
                TableOutcome(table="*", status=RestoreStatus.FAILED, cause=str(exc))
            )
        return RestoreReport(artifact=partial.artifact, outcomes=outcomes)
