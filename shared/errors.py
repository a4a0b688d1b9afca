"""
Shared error handling for the resource cache.

Every failure that crosses a component boundary is one of the exceptions
below. Read paths store them on the cache entry; write paths re-raise them
to the caller after rollback.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Error envelope returned by the remote backend: ``{code, error, message}``."""

    model_config = ConfigDict(extra="allow")

    code: int
    error: Optional[str] = None
    message: Optional[str] = None


class ResourceCacheException(Exception):
    """Base exception for resource cache components."""

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.status = status
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to the backend error envelope."""
        return ErrorResponse(code=self.status or 500, error=self.code, message=self.message)


class ValidationError(ResourceCacheException):
    """Caller input failed required-field or shape checks."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details, status=400)


class SchemaValidationError(ResourceCacheException):
    """Server payload does not match the expected shape."""

    def __init__(self, path: str, message: str, key: Optional[str] = None):
        self.path = path
        self.key = key
        super().__init__(
            "SCHEMA_VALIDATION_ERROR",
            f"Schema validation failed for {key or 'payload'}: {path}: {message}",
            {"path": path, "key": key, "reason": message},
        )


class NetworkError(ResourceCacheException):
    """Transport-level failure (connection refused, reset, DNS)."""

    retryable = True

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class RequestTimeoutError(NetworkError):
    """Request exceeded the per-request timeout."""

    def __init__(self, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout}s", details)
        self.code = "TIMEOUT_ERROR"


class NotFoundError(ResourceCacheException):
    """Requested resource does not exist (404)."""

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details, status=404)


class ServerError(ResourceCacheException):
    """Backend failed with a 5xx status."""

    retryable = True

    def __init__(self, status: int = 500, message: str = "Server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVER_ERROR", message, details, status=status)


class ApiError(ResourceCacheException):
    """Any other non-success status returned by the backend."""

    def __init__(self, status: int, message: str = "Request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("API_ERROR", message, details, status=status)


RETRYABLE_ERRORS = (NetworkError, ServerError)


def error_for_status(status: int, message: str, details: Optional[Dict[str, Any]] = None) -> ResourceCacheException:
    """Map a non-success HTTP status onto the taxonomy."""
    if status == 404:
        return NotFoundError(message, details)
    if status == 400:
        return ValidationError(message, details)
    if status >= 500:
        return ServerError(status, message, details)
    return ApiError(status, message, details)
