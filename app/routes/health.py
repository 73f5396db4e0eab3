"""
Health check endpoints.

This module provides health monitoring endpoints for:
- Liveness probes (ping)
- Readiness probes (ready)
- Deep health checks (health with ?deep=true)

Usage:
    GET /health     - Full health check
    GET /ping       - Simple liveness probe
    GET /ready      - Readiness probe
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from app.config import get_logger
from app.dependencies import get_app_state, limiter
from app.exceptions import BackendException
from app.models import HealthResponse, PingResponse, ReadinessResponse, ServiceStatus
from app.state import AppState

logger = get_logger("routes.health")

router = APIRouter(tags=["Health"])

# Document read by ?deep=true; it does not need to exist
HEALTH_COLLECTION = "_health"
HEALTH_DOC_ID = "ping"


# =============================================================================
# Health Check Endpoint
# =============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns backend provider status.",
    responses={
        200: {"description": "Service is healthy"},
        503: {"description": "Service is unhealthy"},
    },
)
@limiter.exempt
async def health_check(
    request: Request,
    state: AppState = Depends(get_app_state),
    deep: bool = Query(
        default=False,
        description="Perform a read through the server database adapter",
    ),
) -> HealthResponse | JSONResponse:
    """
    Returns the health of the server-side backend.

    - **healthy**: server context initialized (and the deep read succeeded)
    - **degraded**: initialized, but the deep read failed
    - **unhealthy**: server context failed to initialize
    """
    backend: dict[str, Any] = {
        "provider": state.provider_name,
        "ready": state.is_ready(),
    }
    if state.startup_error:
        backend["error"] = state.startup_error

    overall = ServiceStatus.HEALTHY if state.is_ready() else ServiceStatus.UNHEALTHY

    if deep and state.is_ready():
        start_time = time.perf_counter()
        try:
            db = await state.backend.get_server_db()
            await db.get_doc(HEALTH_COLLECTION, HEALTH_DOC_ID)
            backend["database_latency_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            backend["database"] = ServiceStatus.HEALTHY.value
        except BackendException as e:
            logger.warning("Deep health check failed for database: %s", e.message)
            backend["database"] = ServiceStatus.UNHEALTHY.value
            overall = ServiceStatus.DEGRADED

    response = HealthResponse(
        status=overall.value,
        services={"backend": backend},
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    if overall is ServiceStatus.UNHEALTHY:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )
    return response


# =============================================================================
# Liveness Probe
# =============================================================================

@router.get(
    "/ping",
    response_model=PingResponse,
    summary="Liveness probe",
    description="Simple ping endpoint for keepalive checks. Does not verify service health.",
)
@limiter.exempt
async def ping(request: Request) -> PingResponse:
    return PingResponse(status="ok")


# =============================================================================
# Readiness Probe
# =============================================================================

@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    responses={
        503: {"description": "Service is not ready"},
    },
)
@limiter.exempt
async def readiness_check(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> ReadinessResponse | JSONResponse:
    """Returns 503 until the server backend has initialized."""
    checks = {"backend": state.is_ready()}
    response = ReadinessResponse(ready=all(checks.values()), checks=checks)

    if not response.ready:
        logger.warning("Readiness check failed: backend=%s", state.provider_name)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )
    return response
