"""
Vitalis - Common Schemas.

Shared Pydantic models used across all modules.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# Error Responses
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(default=None, description="Additional context")
    request_id: UUID | None = Field(default=None, description="Request ID for tracing")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail


# =============================================================================
# Health Check / Status
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., pattern="^(healthy|degraded)$")
    version: str
    features: dict[str, bool]
    app_env: str | None = None
    is_production: bool | None = None


class ContextStatus(BaseModel):
    """Rate limiter snapshot for one context."""

    name: str
    queue_depth: int
    window_usage: int
    max_requests: int
    window_seconds: float
    next_slot_eta: float
    draining: bool
    available: bool


class StatusResponse(BaseModel):
    """Governance introspection."""

    contexts: dict[str, ContextStatus]
    cache: dict[str, Any]
    metrics: dict[str, Any]
