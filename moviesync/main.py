"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from elastic_transport import TransportError
from elasticsearch import ApiError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from moviesync import __version__
from moviesync.api.health import router as health_router
from moviesync.api.sync import router as sync_router
from moviesync.config import Settings
from moviesync.database import create_engine, create_tables, ensure_sqlite_dir
from moviesync.exceptions import (
    IndexingError,
    InternalServerError,
    MovieNotFoundError,
    SyncAlreadyRunningError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("elastic_transport").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting MovieSync (debug=%s)", settings.debug)

    try:
        ensure_sqlite_dir(settings.database_url)
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_tables(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    app.state.search_index = None
    app.state.sync_service = None

    if settings.sync_enabled:
        from moviesync.services.checkpoint_service import CheckpointStore
        from moviesync.services.notification_service import WatchlistNotificationService
        from moviesync.services.search_index import create_elasticsearch_service
        from moviesync.services.storage_service import MovieStorage
        from moviesync.services.sync_service import DataSyncService, SyncOptions

        search_index = create_elasticsearch_service(settings)
        try:
            await search_index.initialize()
        except Exception as exc:
            logger.critical(
                "Failed to initialize Elasticsearch at %s: %s", settings.elasticsearch_url, exc
            )
            await search_index.close()
            raise
        app.state.search_index = search_index

        storage = MovieStorage(session_factory)
        sync_service = DataSyncService(
            storage=storage,
            index=search_index,
            notifier=WatchlistNotificationService(session_factory, storage),
            checkpoints=CheckpointStore(session_factory),
            options=SyncOptions.from_settings(settings),
        )
        app.state.sync_service = sync_service

        try:
            await sync_service.initialize()
        except Exception as exc:
            # The periodic trigger is already running and retries on its own.
            logger.error("Initial incremental sync failed: %s", exc, exc_info=True)
    else:
        logger.info("Search index sync disabled")

    yield

    if app.state.sync_service is not None:
        try:
            await app.state.sync_service.shutdown()
        except Exception as exc:
            logger.error("Error during sync scheduler shutdown: %s", exc, exc_info=True)

    if app.state.search_index is not None:
        try:
            await app.state.search_index.close()
        except Exception as exc:
            logger.error("Error during Elasticsearch client shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("MovieSync stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="MovieSync",
        description="Keeps the movie search index in step with the catalogue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.include_router(health_router)
    app.include_router(sync_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(SyncAlreadyRunningError)
    async def sync_running_handler(
        request: Request, exc: SyncAlreadyRunningError
    ) -> JSONResponse:
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(MovieNotFoundError)
    async def movie_not_found_handler(request: Request, exc: MovieNotFoundError) -> JSONResponse:
        logger.info("MovieNotFoundError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(IndexingError)
    async def indexing_error_handler(request: Request, exc: IndexingError) -> JSONResponse:
        logger.error("IndexingError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"detail": "Search index rejected the update"},
        )

    @app.exception_handler(ApiError)
    async def es_api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        logger.error(
            "Elasticsearch ApiError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Search index request failed"},
        )

    @app.exception_handler(TransportError)
    async def es_transport_error_handler(
        request: Request, exc: TransportError
    ) -> JSONResponse:
        logger.error(
            "Elasticsearch TransportError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Search index unavailable"},
        )

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
        if isinstance(exc, (NotImplementedError, RecursionError)):
            raise exc
        logger.error(
            "RuntimeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal processing error"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "moviesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
