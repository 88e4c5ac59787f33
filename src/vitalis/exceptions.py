"""
Vitalis - Custom Exceptions.

Centralized exception handling with standardized error responses.
"""

from typing import Any
from uuid import UUID


class VitalisException(Exception):
    """Base exception for Vitalis application."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        request_id: UUID | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.request_id = request_id
        super().__init__(message)


class FeatureDisabledException(VitalisException):
    """Raised when a feature flag is disabled."""

    def __init__(self, feature_name: str):
        super().__init__(
            code="FEATURE_DISABLED",
            message=f"Feature '{feature_name}' is currently disabled",
            status_code=503,
            details={"feature": feature_name},
        )


class ValidationException(VitalisException):
    """Raised for validation errors."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details={"errors": errors} if errors else None,
        )


# =============================================================================
# AI governance taxonomy
# =============================================================================


class QuotaExceededException(VitalisException):
    """Raised when the upstream provider explicitly signals rate limiting."""

    def __init__(self, context: str, message: str = "Upstream quota exceeded"):
        super().__init__(
            code="QUOTA_EXCEEDED",
            message=f"{message} (context={context})",
            status_code=429,
            details={"context": context},
        )


class UpstreamUnavailableException(VitalisException):
    """Raised when no credential is configured or the transport fails."""

    def __init__(self, context: str, message: str):
        super().__init__(
            code="UPSTREAM_UNAVAILABLE",
            message=f"AI service unavailable for context '{context}': {message}",
            status_code=503,
            details={"context": context},
        )


class StorageFailureException(VitalisException):
    """Raised by a KV store when a read/write cannot be completed."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(
            code="STORAGE_FAILURE",
            message=message,
            status_code=507,
            details={"key": key} if key else None,
        )


class StorageFullException(StorageFailureException):
    """Raised by a KV store when a write is refused for lack of capacity."""

    def __init__(self, key: str, capacity: int | None = None):
        super().__init__(f"Storage capacity exceeded while writing {key}", key=key)
        if capacity is not None:
            self.details = {**(self.details or {}), "capacity": capacity}


class MalformedResultException(VitalisException):
    """Raised when a computation succeeds but yields nothing usable."""

    def __init__(self, function_name: str):
        super().__init__(
            code="MALFORMED_RESULT",
            message=f"{function_name} returned an empty result",
            status_code=502,
            details={"function": function_name},
        )


class CacheKeyException(VitalisException):
    """Raised when a cache key cannot be built (programmer error)."""

    def __init__(self, function_name: str, message: str, missing: list[str] | None = None):
        details: dict[str, Any] = {"function": function_name}
        if missing:
            details["missing"] = missing
        super().__init__(
            code="CACHE_KEY_INVALID",
            message=message,
            status_code=400,
            details=details,
        )
