from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field


class RelayError(Exception):
    """Base class for all errors raised by the relay."""


class ConfigurationError(RelayError):
    """Required configuration is missing or invalid; the process must not start."""

    def __init__(self, missing: Iterable[str], *, message: str | None = None) -> None:
        self.missing = list(missing)
        if message is None:
            message = "Missing required configuration: " + ", ".join(self.missing)
        super().__init__(message)


class DependencyError(RelayError):
    """A call to an external dependency failed."""


class StorageConnectionError(DependencyError):
    """The networked key/value store could not be reached."""


class DurableStoreError(DependencyError):
    """The durable (SQL) store rejected or failed an operation."""


class AssistantBackendError(DependencyError):
    """The hosted assistant backend failed a request."""


class TransportError(DependencyError):
    """The messaging transport rejected or failed a request."""


class BreakerOpenError(RelayError):
    """A circuit breaker is open; the call was not attempted."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open; retry in {retry_after:.1f}s"
        )


class ErrorResponse(BaseModel):
    """
    Standard error payload for the HTTP surface:
    {
        "error": "not_found",
        "message": "Session '42' not found",
        "code": 404,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def service_unavailable(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error="service_unavailable",
        message=message,
        details=details,
    )


__all__ = [
    "AssistantBackendError",
    "BreakerOpenError",
    "ConfigurationError",
    "DependencyError",
    "DurableStoreError",
    "ErrorResponse",
    "RelayError",
    "StorageConnectionError",
    "TransportError",
    "http_error",
    "not_found",
    "service_unavailable",
]
