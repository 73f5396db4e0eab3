"""
Client configuration endpoint.

Client processes call GET /api/config to learn which backend is active
and how to reach it. Only client-safe fields are ever returned.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.config import Settings, get_logger, get_settings
from app.exceptions import ConfigurationError
from app.loaders import get_public_backend_config
from app.models import ErrorResponse

logger = get_logger("routes.config")

router = APIRouter(prefix="/api", tags=["Config"])


@router.get(
    "/config",
    summary="Client backend configuration",
    description="Returns the active provider and its public connection fields.",
    responses={
        200: {
            "description": "Client configuration",
            "content": {
                "application/json": {
                    "example": {
                        "provider": "supabase",
                        "url": "https://abc.supabase.co",
                        "anonKey": "eyJ...",
                        "storageBucket": "uploads",
                    }
                }
            },
        },
        500: {"model": ErrorResponse, "description": "Active provider is misconfigured"},
    },
)
async def get_config(settings: Settings = Depends(get_settings)) -> Any:
    try:
        return get_public_backend_config(settings)
    except ConfigurationError as e:
        logger.error("Client config unavailable: %s", e.message)
        error = ErrorResponse(
            detail="Server configuration error.",
            error_type=e.__class__.__name__,
            error_code=e.error_code,
            details=e.message,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.to_content(),
        )
