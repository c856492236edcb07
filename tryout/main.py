"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tryout.api.v1.api import api_router
from tryout.core.config import settings
from tryout.core.error_responses import engine_error_status
from tryout.core.exceptions import EngineError, SubmissionPersistenceFailure
from tryout.core.logging_config import setup_logging
from tryout.error_tracking import capture_error, init_sentry
from tryout.middleware import RequestLoggingMiddleware
from tryout.models import Base, engine
from tryout.observability import metrics
from tryout.services.expiry_watcher import ExpiryWatcher

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    - On startup: initializes Sentry, tables and metrics, starts the expiry watcher
    - On shutdown: stops the watcher and flushes metrics
    """
    # Startup
    init_sentry()

    if settings.DATABASE_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")

    metrics.initialize()
    logger.info("Application metrics initialized")

    watcher: Optional[ExpiryWatcher] = None
    if settings.EXPIRY_WATCHER_ENABLED:
        watcher = ExpiryWatcher()
        watcher.start()
        app.state.expiry_watcher = watcher

    yield

    # Shutdown
    if watcher is not None:
        await watcher.stop()

    metrics.shutdown()
    logger.info("Application shutting down")


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "sessions",
        "description": "Timed tryout sessions: start, answer, navigate, countdown and submit",
    },
    {
        "name": "rankings",
        "description": "Package leaderboards with standard competition ranking",
    },
]


def _error_context(request: Request, **extra) -> dict:
    return {"path": str(request.url.path), "method": request.method, **extra}


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**Tryout Engine API** - timed assessment sessions for tryout packages.\n\n"
            "This API provides:\n"
            "* Server-authoritative countdown timers that survive reconnects\n"
            "* Answer recording, review flags and navigation\n"
            "* Automatic submission when time runs out\n"
            "* Scoring and package leaderboards\n\n"
            "## Authentication\n\n"
            "All session and ranking endpoints require a JWT Bearer token."
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Configure Request Logging
    app.add_middleware(RequestLoggingMiddleware)

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(EngineError)
    async def engine_exception_handler(request: Request, exc: EngineError):
        """
        Map session engine exceptions onto HTTP responses.
        """
        status_code, detail = engine_error_status(exc)
        content: dict = {"detail": detail}
        if isinstance(exc, SubmissionPersistenceFailure):
            content["retryable"] = True

        if status_code >= 500:
            logger.error(
                f"Engine failure on {request.method} {request.url.path}: {exc.message}"
            )
            metrics.record_error(exc.__class__.__name__, path=str(request.url.path))
            capture_error(
                exc,
                context=_error_context(request),
                tags={"error_type": exc.__class__.__name__},
            )
        else:
            logger.info(
                f"{exc.__class__.__name__} on {request.method} {request.url.path}: "
                f"{exc.message}"
            )

        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handle HTTP exceptions and count server errors.
        """
        if exc.status_code >= 500:
            metrics.record_error("HTTPException", path=str(request.url.path))
            capture_error(
                exc,
                context=_error_context(request, status_code=exc.status_code),
                tags={"error_type": "HTTPException"},
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        # Convert errors to serializable format
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions and track them.

        Generates a unique error_id (UUID) for each exception so support can
        find the full traceback in the logs. The error_id is included in the
        response body and logged with the exception.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )
        metrics.record_error(exc.__class__.__name__, path=str(request.url.path))
        capture_error(
            exc,
            context=_error_context(request, error_id=error_id),
            tags={"error_type": exc.__class__.__name__},
        )

        # Don't leak internal details
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error_id": error_id,
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
