"""FastAPI application factory.

Usage:
    from bakery_db.api.app import create_app

    app = create_app()          # settings from env / db.toml
    uvicorn.run(app, port=5000)
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bakery_db import __version__
from bakery_db.api.routes import router
from bakery_db.config.loader import load_settings
from bakery_db.config.models import PersistenceSettings
from bakery_db.errors import (
    ArtifactError,
    ArtifactNotFoundError,
    DatabaseConnectionError,
    InvalidIdentifierError,
    NoTablesError,
    PersistenceError,
    RestoreError,
    TableNotFoundError,
)
from bakery_db.factory import PersistenceServices, build_services

logger = logging.getLogger(__name__)


def _error_body(message: str, **extra: object) -> dict:
    return {"status": "error", "message": message, **extra}


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=_error_body("Invalid request", errors=jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(InvalidIdentifierError)
    async def _bad_identifier(request: Request, exc: InvalidIdentifierError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(str(exc)))

    @app.exception_handler(TableNotFoundError)
    async def _no_table(request: Request, exc: TableNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(str(exc)))

    @app.exception_handler(ArtifactNotFoundError)
    async def _no_artifact(request: Request, exc: ArtifactNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(str(exc)))

    @app.exception_handler(ArtifactError)
    async def _bad_artifact(request: Request, exc: ArtifactError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(str(exc)))

    @app.exception_handler(NoTablesError)
    async def _no_tables(request: Request, exc: NoTablesError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_error_body(str(exc)))

    @app.exception_handler(RestoreError)
    async def _restore_failed(request: Request, exc: RestoreError) -> JSONResponse:
        report = exc.report.to_dict() if exc.report else None
        return JSONResponse(status_code=500, content=_error_body(str(exc), report=report))

    @app.exception_handler(DatabaseConnectionError)
    async def _unavailable(request: Request, exc: DatabaseConnectionError) -> JSONResponse:
        logger.error("Database unavailable: %s", exc)
        return JSONResponse(status_code=503, content=_error_body(str(exc), connected=False))

    @app.exception_handler(PersistenceError)
    async def _store_failure(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Request %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content=_error_body(str(exc)))


def create_app(
    settings: PersistenceSettings | None = None,
    services: PersistenceServices | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings for building services at startup. Loaded from
            the environment and db.toml when None.
        services: Pre-built services; the app then does not close them.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        app.state.services = services or build_services(settings or load_settings())
        app.state.maintenance_lock = asyncio.Lock()
        if not app.state.services.manager.is_configured:
            logger.warning("DATABASE_URL is not set; /api/db-* will report errors")
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()

    app = FastAPI(title="bakery-db", version=__version__, lifespan=lifespan)
    _register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app
