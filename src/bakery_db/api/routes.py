"""Database maintenance endpoints.

All routes live under ``/api``. Table names from the path are validated
before they reach SQL; snapshot and restore calls are serialized per
process by ``app.state.maintenance_lock``.
"""

import asyncio
import logging
import math
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from bakery_db.backup.codec import encode_row
from bakery_db.errors import DatabaseConnectionError, QueryError, TableNotFoundError
from bakery_db.factory import PersistenceServices
from bakery_db.schema.identifiers import validate_identifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["database"])

MAX_PAGE_SIZE = 1000


def get_services(request: Request) -> PersistenceServices:
    return request.app.state.services


def get_maintenance_lock(request: Request) -> asyncio.Lock:
    return request.app.state.maintenance_lock


ServicesDep = Annotated[PersistenceServices, Depends(get_services)]
LockDep = Annotated[asyncio.Lock, Depends(get_maintenance_lock)]


class RestoreRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    backup_file: str | None = Field(default=None, alias="backupFile")


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": message, **extra},
    )


@router.get("/db-status")
async def db_status(services: ServicesDep) -> Any:
    """Connection status, database identity and per-table sizes."""
    if not services.manager.is_configured:
        return _error(500, "DATABASE_URL is not configured", connected=False)

    try:
        async with services.manager.transaction(read_only=True) as tx:
            introspector = services.introspector.bind(tx)
            info = await introspector.database_info()
            tables = []
            for name in await introspector.table_names():
                tables.append(
                    {
                        "name": name,
                        "records": await introspector.count_rows(name),
                        "columns": len(await introspector.get_columns(name)),
                    }
                )
    except (DatabaseConnectionError, QueryError) as exc:
        logger.error("Status check failed: %s", exc)
        return _error(500, f"Database connection failed: {exc}", connected=False)

    info.tables_count = len(tables)
    return {
        "status": "success",
        "connected": True,
        "database_info": info.model_dump(),
        "tables": tables,
        "message": "Database connection successful",
    }


@router.get("/db-table/{table_name}")
async def db_table(
    table_name: str,
    services: ServicesDep,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Any:
    """One page of rows from *table_name*."""
    validate_identifier(table_name)

    async with services.manager.transaction(read_only=True) as tx:
        introspector = services.introspector.bind(tx)
        if not await introspector.table_exists(table_name):
            raise TableNotFoundError(table_name)
        types = {c.name: c.data_type for c in await introspector.get_columns(table_name)}
        qualified = introspector.qualified_name(table_name)
        page = await tx.execute(
            f"SELECT * FROM {qualified} LIMIT :limit OFFSET :offset",
            {"limit": limit, "offset": offset},
        )
        total = await introspector.count_rows(table_name)

    rows = [encode_row(row, types) for row in page.rows]
    return {
        "status": "success",
        "table": table_name,
        "rows": rows,
        "count": len(rows),
        "total": total,
        "pagination": {
            "limit": limit,
            "offset": offset,
            "pages": math.ceil(total / limit),
        },
    }


@router.post("/db-backup")
async def db_backup(services: ServicesDep, lock: LockDep) -> Any:
    """Write a new snapshot artifact."""
    async with lock:
        info = await services.writer.create_snapshot()
    return {
        "status": "success",
        "message": "Backup created successfully",
        "backup_file": info.path,
        "backup_name": info.name,
        "row_counts": info.row_counts,
    }


@router.post("/db-restore")
async def db_restore(
    services: ServicesDep,
    lock: LockDep,
    body: RestoreRequest | None = None,
) -> Any:
    """Restore the named artifact from the storage directory."""
    if body is None or not body.backup_file:
        return _error(400, "backupFile is required")

    async with lock:
        report = await services.restorer.restore(body.backup_file)
    return {
        "status": "success",
        "message": "Database restored successfully",
        "report": report.to_dict(),
    }


@router.get("/db-backups")
async def db_backups(services: ServicesDep) -> Any:
    """Artifacts in the storage directory, newest first."""
    artifacts = await asyncio.to_thread(services.store.list_artifacts)
    return {
        "status": "success",
        "backups": [a.model_dump(mode="json", exclude={"row_counts"}) for a in artifacts],
    }
