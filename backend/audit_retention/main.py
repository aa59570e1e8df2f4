"""Audit Retention Service - Main FastAPI Application

Audit log retention and archival for the library platform.

This module creates and configures the main FastAPI application, including:
- The audit retention admin router
- Middleware (request ID correlation, CORS)
- Exception handlers (retention errors mapped to HTTP status codes)
- Health and observability endpoints
- Startup/shutdown of the background cleanup scheduler
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings

# Observability
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router

# Retention
from .retention.errors import (
    ArchiveNotFoundError,
    ArchiveValidationError,
    ArchiveWriteError,
    ConcurrencyLimitError,
)
from .retention.lifecycle import ArchiveLifecycleManager
from .retention.router import router as retention_router
from .retention.scheduler import CleanupScheduler
from .retention.service import create_cleanup_engine

settings = get_settings()

configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)


def init_retention(app: FastAPI) -> None:
    """Attach the cleanup engine, archive lifecycle manager and scheduler to app.state."""
    retention_settings = get_settings().retention_settings()
    engine = create_cleanup_engine(retention_settings)
    lifecycle = ArchiveLifecycleManager.from_settings(retention_settings)

    app.state.cleanup_engine = engine
    app.state.archive_lifecycle = lifecycle
    app.state.cleanup_scheduler = CleanupScheduler(engine, lifecycle=lifecycle)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    - Startup: Build retention components, start the cleanup scheduler
    - Shutdown: Stop the scheduler (cancels an in-flight run between batches)
    """
    logger.info("Audit retention service starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    if not hasattr(app.state, "cleanup_engine"):
        init_retention(app)
    app.state.cleanup_scheduler.start()

    yield

    logger.info("Audit retention service shutting down...")
    app.state.cleanup_scheduler.stop()


app = FastAPI(
    title="Audit Retention API",
    description="Audit log retention, archival and cleanup administration",
    version="0.1.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

# Request ID Middleware (must be first for proper correlation)
app.add_middleware(RequestIDMiddleware)

ALLOWED_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:8080"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(ConcurrencyLimitError)
async def concurrency_limit_handler(
    request: Request,
    exc: ConcurrencyLimitError
) -> JSONResponse:
    """Another cleanup run holds every permit. Retryable."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers={"Retry-After": str(exc.retry_after_seconds)},
        content={
            "error": "cleanup_in_progress",
            "message": str(exc),
            "retry_after_seconds": exc.retry_after_seconds,
        },
    )


@app.exception_handler(ArchiveValidationError)
async def archive_validation_handler(
    request: Request,
    exc: ArchiveValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "invalid_archive_name",
            "message": "Invalid archive file name",
        },
    )


@app.exception_handler(ArchiveNotFoundError)
async def archive_not_found_handler(
    request: Request,
    exc: ArchiveNotFoundError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "archive_not_found",
            "message": str(exc),
        },
    )


@app.exception_handler(ArchiveWriteError)
async def archive_write_handler(
    request: Request,
    exc: ArchiveWriteError
) -> JSONResponse:
    logger.error(f"Archive write failed on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "archive_write_error",
            "message": "The archive file could not be written.",
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors.

    Returns a structured error response with field-level details.
    """
    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={"errors": exc.errors()}
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serializable context objects."""
    return [
        {key: value for key, value in error.items() if key in ("loc", "msg", "type")}
        for error in exc.errors()
    ]


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """Handle database errors.

    Logs the full error but returns a generic message to prevent
    information leakage.
    """
    logger.error(
        f"Database error on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "database_error",
            "message": "A database error occurred. Please try again later.",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle uncaught exceptions.

    Full details are logged but not exposed to the client.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


# =============================================================================
# ROUTERS
# =============================================================================

# Observability (no prefix - root level)
app.include_router(observability_router)

app.include_router(retention_router, prefix="/api/v1")


# =============================================================================
# ROOT ENDPOINTS
# =============================================================================

@app.get("/", include_in_schema=False)
async def root() -> dict[str, Any]:
    """Root endpoint - API information."""
    return {
        "name": "Audit Retention API",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs" if settings.ENVIRONMENT != "production" else None,
    }


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "audit_retention.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
