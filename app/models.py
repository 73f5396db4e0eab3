"""
Pydantic models for request/response validation and OpenAPI documentation.

Usage:
    from app.models import ErrorResponse, SessionResponse
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class ServiceStatus(str, Enum):
    """Status values for health checks."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """
    Standard error response format.

    All API errors return this format for consistency.
    """

    model_config = ConfigDict(frozen=True)

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        ...,
        description="Error classification",
        examples=["ConfigurationError", "AuthError", "UnsupportedFeatureError"],
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code",
        examples=["MISSING_CONFIGURATION", "INVALID_ID_TOKEN"],
    )
    details: str | None = Field(
        default=None,
        description="Additional error details",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the error occurred",
    )

    def to_content(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class SessionResponse(BaseModel):
    """Result of creating or clearing the session cookie."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(
        default="success",
        description="Operation status",
    )


class HealthResponse(BaseModel):
    """
    Health check response with service statuses.

    Example:
        >>> health = HealthResponse(
        ...     status="healthy",
        ...     services={"backend": {"provider": "supabase", "ready": True}},
        ...     timestamp="2024-01-01T00:00:00Z"
        ... )
    """

    model_config = ConfigDict(strict=True)

    status: str = Field(
        ...,
        description="Overall health status",
        examples=["healthy", "degraded", "unhealthy"],
    )
    services: dict[str, Any] = Field(
        ...,
        description="Individual service health statuses",
    )
    timestamp: str = Field(
        ...,
        description="ISO 8601 timestamp",
    )
    version: str = Field(
        default="1.0.0",
        description="API version",
    )


class ReadinessResponse(BaseModel):
    """Readiness probe response for container orchestration."""

    model_config = ConfigDict(frozen=True)

    ready: bool = Field(
        ...,
        description="Whether the service is ready to accept requests",
    )
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual readiness check results",
    )


class PingResponse(BaseModel):
    """Simple ping response."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(
        default="ok",
        description="Ping status",
    )
