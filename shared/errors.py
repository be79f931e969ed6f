"""
Shared error handling for the cache-aside service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for cache-aside components."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """The source confirmed the key does not exist."""

    status_code = 404

    def __init__(self, key: str, message: str = "Key not found", details: Optional[Dict[str, Any]] = None):
        self.key = key
        super().__init__("NOT_FOUND", message, {"key": key, **(details or {})})


class SourceError(AccessLayerException):
    """Non-retryable source failure (bad request, unexpected payload)."""

    status_code = 502

    def __init__(self, source: str, message: str = "Source error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SOURCE_ERROR", f"{source}: {message}", details)


class TransientSourceError(AccessLayerException):
    """Source unreachable or timed out. Never cached."""

    status_code = 503

    def __init__(self, source: str, message: str = "Source unavailable", details: Optional[Dict[str, Any]] = None):
        self.source = source
        super().__init__("SOURCE_UNAVAILABLE", f"{source}: {message}", details)


class CacheUnavailableError(AccessLayerException):
    """Cache backend unreachable. Callers degrade to the source."""

    status_code = 503

    def __init__(self, operation: str, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("CACHE_UNAVAILABLE", message, {"operation": operation, **(details or {})})


class FillTimeoutError(AccessLayerException):
    """Caller gave up waiting on an in-flight fill."""

    status_code = 504

    def __init__(self, key: str, timeout: float):
        super().__init__(
            "FILL_TIMEOUT",
            "Timed out waiting for cache fill",
            {"key": key, "timeout_seconds": timeout}
        )
