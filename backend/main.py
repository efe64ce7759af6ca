"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from backend.api.auth import router as auth_router
from backend.api.health import router as health_router
from backend.api.ideas import router as ideas_router
from backend.api.sources import router as sources_router
from backend.api.sync import router as sync_router
from backend.config import APP_VERSION, Settings
from backend.database import create_engine, init_schema
from backend.exceptions import (
    SourceModeError,
    SourceNotFoundError,
    StoreOperationError,
    StoreUnavailableError,
    UpstreamFetchError,
)
from backend.services.auth_service import ensure_admin_user
from backend.services.github_client import GitHubClient
from backend.services.rate_limit_service import LoginThrottle
from backend.services.sync_context import SourceLockRegistry

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
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting Hub (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await init_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    try:
        async with session_factory() as session:
            await ensure_admin_user(session, settings)
    except Exception as exc:
        logger.critical("Failed to ensure admin user: %s.", exc)
        raise

    http_client = httpx.AsyncClient(timeout=settings.github_timeout_seconds)
    app.state.github_client = GitHubClient(
        http_client,
        api_url=settings.github_api_url,
        token=settings.github_token,
    )
    if not settings.github_token:
        logger.info("No GitHub token configured; GitHub sync uses unauthenticated requests")

    yield

    try:
        await http_client.aclose()
    except Exception as exc:
        logger.error("Error during HTTP client shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Hub stopped")


def _error_response(
    request: Request, exc: Exception, status_code: int, detail: str, *, level: int
) -> JSONResponse:
    logger.log(
        level,
        "%s in %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc,
        exc_info=exc if level >= logging.ERROR else None,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Hub",
        description="Personal hub for sources, files and ideas",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.login_throttle = LoginThrottle(
        settings.auth_login_max_failures, settings.auth_rate_limit_window_seconds
    )
    app.state.source_locks = SourceLockRegistry()

    app.add_middleware(GZipMiddleware, minimum_size=500)

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:3000", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(sources_router)
    app.include_router(ideas_router)
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

    @app.exception_handler(SourceNotFoundError)
    async def source_not_found_handler(
        request: Request, exc: SourceNotFoundError
    ) -> JSONResponse:
        return _error_response(request, exc, 404, "Source not found", level=logging.INFO)

    @app.exception_handler(SourceModeError)
    async def source_mode_handler(request: Request, exc: SourceModeError) -> JSONResponse:
        return _error_response(request, exc, 400, str(exc), level=logging.INFO)

    @app.exception_handler(UpstreamFetchError)
    async def upstream_fetch_handler(request: Request, exc: UpstreamFetchError) -> JSONResponse:
        return _error_response(request, exc, 502, str(exc), level=logging.WARNING)

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableError
    ) -> JSONResponse:
        return _error_response(
            request, exc, 503, "Database temporarily unavailable", level=logging.ERROR
        )

    @app.exception_handler(StoreOperationError)
    async def store_operation_handler(
        request: Request, exc: StoreOperationError
    ) -> JSONResponse:
        return _error_response(request, exc, 500, "Storage operation failed", level=logging.ERROR)

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
        if isinstance(exc, (NotImplementedError, RecursionError)):
            raise exc
        return _error_response(
            request, exc, 500, "Internal processing error", level=logging.ERROR
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error_response(
            request, exc, 422, str(exc) or "Invalid value", level=logging.WARNING
        )

    @app.exception_handler(TypeError)
    async def type_error_handler(request: Request, exc: TypeError) -> JSONResponse:
        logger.error(
            "[BUG] TypeError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        return _error_response(
            request, exc, 503, "Database temporarily unavailable", level=logging.ERROR
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
