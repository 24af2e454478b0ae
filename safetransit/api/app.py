"""FastAPI application factory with middleware and error handlers"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.middleware.sessions import SessionMiddleware

from safetransit.alerts.lifecycle import AlertLifecycleService
from safetransit.alerts.proximity import ProximityService
from safetransit.api.auth import Authenticator
from safetransit.api.endpoints import router
from safetransit.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
)
from safetransit.api.models import ErrorResponse
from safetransit.config import Settings, settings as default_settings
from safetransit.database.connection import DatabaseConnection
from safetransit.database.repositories import Repositories
from safetransit.exceptions import DecryptionError, SafeTransitException
from safetransit.governance.crypto_service import DEFAULT_SECRET, CryptographyService
from safetransit.governance.rate_limiter import RateLimiter, build_rate_limiter
from safetransit.logging_config import setup_logging
from safetransit.metrics import ERROR_COUNT
from safetransit.reporting_service import AnonymousReportingService, utc_now

logger = logging.getLogger(__name__)

SERVICE_NAME = "Safe Transit Incident Reporting API"
VERSION = "1.0.0"


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    error_response = ErrorResponse(error=error, message=message, details=details or {})
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json"),
        headers={"X-Request-ID": request_id}
    )


async def safetransit_exception_handler(request: Request, exc: SafeTransitException) -> JSONResponse:
    """
    Translate domain exceptions into JSON errors.

    Client errors carry their message and details; server-side failures are
    logged in full and answered with a generic message.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    error_type = type(exc).__name__
    ERROR_COUNT.labels(error_type=error_type).inc()

    if exc.status_code >= 500:
        if isinstance(exc, DecryptionError):
            logger.error(
                "Security event: stored data failed integrity check",
                extra={"request_id": request_id, "error_type": error_type}
            )
        else:
            logger.error(
                f"{error_type}: {exc.message}",
                extra={"request_id": request_id, "details": exc.details}
            )
        return _error_response(
            request,
            exc.status_code,
            "InternalServerError",
            "An internal error occurred. Please try again later."
        )

    logger.warning(
        f"{error_type}: {exc.message}",
        extra={"request_id": request_id}
    )
    return _error_response(request, exc.status_code, error_type, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body and parameter validation errors."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]
    ERROR_COUNT.labels(error_type="RequestValidationError").inc()
    logger.warning(
        "Request validation failed",
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "errors": errors}
    )
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "ValidationError",
        "Request validation failed",
        {"validation_errors": errors}
    )


def create_app(
    app_settings: Optional[Settings] = None,
    db: Optional[DatabaseConnection] = None,
    crypto: Optional[CryptographyService] = None,
    authenticator: Optional[Authenticator] = None,
    rate_limiter: Optional[RateLimiter] = None,
    repositories: Callable[[Any], Repositories] = Repositories,
    clock: Callable[[], datetime] = utc_now
) -> FastAPI:
    """
    Build the API with its services.

    Collaborators that are not supplied are built from settings. A database
    connection built here is opened on startup and closed on shutdown; an
    injected one is left to its owner.

    Args:
        app_settings: Settings tree (defaults to the module-level settings)
        db: Database connection
        crypto: Cryptography service
        authenticator: JWT authenticator for admin endpoints
        rate_limiter: Report submission limiter
        repositories: Builds repository bundles for an executor
        clock: Returns the current UTC time

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or default_settings
    if app_settings.security.session_secret == DEFAULT_SECRET:
        logger.warning("Using default session secret - change in production!")
    owns_db = db is None
    if owns_db:
        db = DatabaseConnection()
    if crypto is None:
        crypto = CryptographyService()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Anonymous transit incident reporting and proximity safety alerts",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.state.settings = app_settings
    app.state.db = db
    app.state.crypto = crypto
    app.state.authenticator = authenticator or Authenticator()
    app.state.rate_limiter = rate_limiter or build_rate_limiter()
    app.state.reporting_service = AnonymousReportingService(
        db, crypto, repositories=repositories, clock=clock
    )
    app.state.proximity_service = ProximityService(
        db, repositories=repositories, clock=clock, config=app_settings.proximity
    )
    app.state.lifecycle_service = AlertLifecycleService(
        db, crypto, repositories=repositories, clock=clock, config=app_settings.reporting
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Order matters - last added is outermost
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=app_settings.security.session_secret,
        same_site="strict",
        https_only=app_settings.environment == "production"
    )

    app.add_exception_handler(SafeTransitException, safetransit_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting Safe Transit API...")
        if owns_db:
            db.initialize()
        logger.info("API documentation available at /docs")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down Safe Transit API...")
        if owns_db:
            db.close()

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION
        }

    @app.get("/metrics", tags=["Monitoring"])
    async def metrics():
        """Prometheus metrics in text format."""
        return PlainTextResponse(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "status": "operational",
            "documentation": "/docs"
        }

    return app


def build_default_app() -> FastAPI:
    """Application served by uvicorn, with logging configured."""
    setup_logging()
    return create_app()

