"""Standard API response envelopes."""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard JSON error response for non-OAI routes."""

    success: bool = False
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Liveness check response."""

    status: str
    service: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response with per-dependency status."""

    ready: bool
    checks: dict[str, bool]
    registration_configured: Optional[bool] = None
