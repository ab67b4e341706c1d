"""FastAPI application entry point."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from lookup_optimizer.api.admin import router as admin_router
from lookup_optimizer.api.attachments import router as attachments_router
from lookup_optimizer.api.auth import router as auth_router
from lookup_optimizer.api.health import router as health_router
from lookup_optimizer.api.lookup import router as lookup_router
from lookup_optimizer.config import Settings
from lookup_optimizer.database import create_engine
from lookup_optimizer.models.base import Base
from lookup_optimizer.services.admin_service import load_runtime_settings
from lookup_optimizer.services.container import build_components, close_components
from lookup_optimizer.services.rate_limit_service import FailedAttemptLimiter

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _app_version() -> str:
    try:
        return version("lookup-optimizer")
    except PackageNotFoundError:
        return "0.1.0"


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
    logging.getLogger("httpx").setLevel(logging.WARNING)


def ensure_sqlite_dir(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if not database_url.startswith("sqlite"):
        return
    db_path = database_url.split("///", 1)[-1] if "///" in database_url else None
    if db_path and db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting lookup optimizer (debug=%s)", settings.debug)

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
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    components = build_components(engine, session_factory, settings)
    app.state.components = components

    try:
        await load_runtime_settings(components.options, settings)
        await components.maintenance.ensure_indexes(_app_version())
    except Exception as exc:
        logger.critical("Failed to prepare database indexes: %s.", exc)
        raise

    if settings.lookup_table_enabled:
        try:
            await components.index.ensure_table()
            synced = await components.index.bulk_sync()
            logger.info("Lookup index startup sync: %d attachments indexed", synced)
        except Exception as exc:
            # The slow scan still answers lookups without the index.
            logger.error("Lookup index startup sync failed: %s", exc, exc_info=True)

    if settings.remote_sync_enabled:
        components.timer.start()

    yield

    try:
        await close_components(components)
    except Exception as exc:
        logger.error("Error during component shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Lookup optimizer stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Lookup Optimizer",
        description="Indexed path-to-attachment lookups with CDN upload sync",
        version=_app_version(),
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.rate_limiter = FailedAttemptLimiter(
        settings.auth_max_failures, settings.auth_rate_limit_window_seconds
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(lookup_router)
    app.include_router(attachments_router)
    app.include_router(admin_router)

    # Global exception handlers: safety net for unhandled exceptions

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

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(json.JSONDecodeError)
    async def json_error_handler(request: Request, exc: json.JSONDecodeError) -> JSONResponse:
        logger.error(
            "JSONDecodeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Data integrity error"},
        )

    from lookup_optimizer.exceptions import InternalServerError

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
        "lookup_optimizer.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
