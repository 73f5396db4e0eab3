"""
FastAPI application entry point.

This module initializes the FastAPI application with:
- Lifespan management (startup/shutdown of the server backend)
- Middleware configuration (CORS, rate limiting)
- Exception handlers
- Route registration

Usage:
    Run with uvicorn:
        uvicorn app.main:app --host 0.0.0.0 --port 8080

    Or with the server.py entry point:
        python server.py
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import get_logger, settings
from app.dependencies import limiter
from app.exceptions import BackendException
from app.loaders import get_backend_provider_name
from app.models import ErrorResponse
from app.routes import config as config_routes
from app.routes import health
from app.routes import session as session_routes
from app.state import AppState

logger = get_logger("app.main")

API_VERSION = "1.0.0"


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles:
    - Startup: resolve the backend and initialize its server context
    - Shutdown: close vendor clients
    """
    logger.info("=" * 60)
    logger.info("Backend Provider Service Starting...")
    logger.info("=" * 60)
    logger.info("Configuration | Backend=%s", get_backend_provider_name(settings).value)

    app_state = await AppState.create()
    app.state.app_state = app_state
    if app_state.is_ready():
        logger.info("Server ready to accept requests")
    else:
        logger.warning("Server started without a working backend: %s", app_state.startup_error)
    logger.info("=" * 60)

    yield  # Application running

    logger.info("Shutting down...")
    try:
        await app_state.close()
        logger.info("Backend providers closed")
    except BackendException as e:
        logger.error("Error during shutdown: %s", e.message)
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    application = FastAPI(
        title="Backend Provider API",
        description=(
            "Client configuration and session-cookie endpoints for the "
            "pluggable Firebase / Supabase backend layer."
        ),
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    configure_rate_limiting(application)
    configure_cors(application)
    configure_exception_handlers(application)
    configure_routes(application)

    return application


# =============================================================================
# Rate Limiting
# =============================================================================

def configure_rate_limiting(application: FastAPI) -> None:
    """Configure rate limiting middleware."""
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_middleware(SlowAPIMiddleware)
    logger.debug("Rate limiting configured: %s", settings.RATE_LIMIT)


# =============================================================================
# CORS Configuration
# =============================================================================

def configure_cors(application: FastAPI) -> None:
    """Configure CORS middleware."""
    cors_origins = settings.CORS_ORIGINS_LIST
    allow_credentials = cors_origins != ["*"]

    if not allow_credentials:
        logger.warning(
            "[WARNING] CORS: Wildcard origin '*' configured. "
            "Session cookies cannot be set cross-origin with this setting."
        )
    else:
        logger.info("CORS: Configured for origins: %s", cors_origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


# =============================================================================
# Exception Handlers
# =============================================================================

def configure_exception_handlers(application: FastAPI) -> None:
    """Configure exception handlers."""

    @application.exception_handler(BackendException)
    async def backend_exception_handler(
        request: Request,
        exc: BackendException,
    ) -> JSONResponse:
        """Handle backend layer exceptions."""
        logger.warning(
            "BackendException | path=%s | type=%s | message=%s",
            request.url.path,
            exc.__class__.__name__,
            exc.message,
        )
        error = ErrorResponse(
            detail=exc.message,
            error_type=exc.__class__.__name__,
            error_code=exc.error_code,
            details=exc.details,
        )
        return JSONResponse(status_code=exc.status_code, content=error.to_content())

    @application.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unhandled exceptions."""
        logger.error(
            "Unhandled exception | path=%s | type=%s | error=%s",
            request.url.path,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error_type": "InternalError",
            },
        )


# =============================================================================
# Route Configuration
# =============================================================================

def configure_routes(application: FastAPI) -> None:
    """Configure application routes."""
    application.include_router(health.router)
    application.include_router(config_routes.router)
    application.include_router(session_routes.router)


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()
