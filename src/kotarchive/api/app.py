"""
FastAPI Application Factory & Configuration.

This module initializes the archive API. It is responsible for:
1.  **Middleware Setup**: CORS for browser front-ends.
2.  **Exception Handling**: Global handlers so every error returns structured JSON.
3.  **Routing**: Mounting the archive/analytics router and the health probe.
4.  **Lifecycle**: Building the shared archive services on startup.

Design Pattern
--------------
We use an **Application Factory** pattern (`create_app`), so tests build a
fresh app per case and install an in-memory store before the first request.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kotarchive import __version__
from kotarchive.api.dependencies import ArchiveServices
from kotarchive.api.routers import archives
from kotarchive.core.errors import ArchiveNotFoundError, StorageError
from kotarchive.core.settings import get_logger

logger = get_logger("kotarchive.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    ASGI Lifespan context manager.

    - **Startup**: Initialize the archive services singleton.
    - **Shutdown**: Nothing to release; stores flush on every write.
    """
    logger.info("Starting up (version %s)", __version__)
    services = ArchiveServices.get_instance()
    logger.info("Archive store ready (backend=%s)", services.settings.storage_backend)

    yield

    logger.info("Shutting down")


def create_app() -> FastAPI:
    """
    Construct and configure the archive FastAPI application.

    Returns
    -------
    FastAPI
        The configured ASGI application ready to be served by Uvicorn.
    """
    app = FastAPI(
        title="kot-archive API",
        description="Archives, analytics and replay sources for King of Tokyo sessions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict this to specific domains.
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Global Exception Handlers
    # -----------------------------------------------------------------------
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all handler so unhandled exceptions still return structured JSON."""
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": str(exc),
                "path": request.url.path,
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        """Map Python ValueErrors (invalid payloads, bad speeds) to HTTP 400."""
        return JSONResponse(
            status_code=400,
            content={
                "error": "Bad Request",
                "detail": str(exc),
            },
        )

    @app.exception_handler(ArchiveNotFoundError)
    async def not_found_handler(request: Request, exc: ArchiveNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={
                "error": "Not Found",
                "detail": str(exc),
                "id": exc.archive_id,
            },
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        """Map backend read/write failures to HTTP 503."""
        logger.warning("Archive error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={
                "error": "Storage Unavailable",
                "detail": str(exc),
                "path": request.url.path,
            },
        )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    app.include_router(archives.router)

    @app.get("/health", tags=["System"])
    async def health_check() -> dict[str, str]:
        """Simple liveness probe."""
        return {"status": "ok", "version": __version__}

    return app


__all__ = ["create_app"]
