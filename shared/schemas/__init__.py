"""Shared Pydantic schemas for the metadata exchange."""

from shared.schemas.api_responses import (
    ErrorResponse,
    HealthResponse,
    ReadinessResponse,
)
from shared.schemas.content import (
    AuthorRef,
    ContentRecord,
    ContentStatus,
    ContentType,
    GroupingRef,
    RegistrationState,
    ensure_utc,
)

__all__ = [
    "AuthorRef",
    "ContentRecord",
    "ContentStatus",
    "ContentType",
    "GroupingRef",
    "RegistrationState",
    "ensure_utc",
    "ErrorResponse",
    "HealthResponse",
    "ReadinessResponse",
]
