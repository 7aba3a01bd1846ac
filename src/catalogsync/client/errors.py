"""Error taxonomy for remote API calls.

This module provides:
- ErrorCode: structured failure code attached by the HTTP gateway
- GatewayError: value describing one failed call
- ErrorClassification / classify_error: retry policy as a pure function
- APIError and subclasses: exceptions for callers that prefer raising
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from catalogsync.core.types import ErrorCategory


class ErrorCode(str, Enum):
    """Structured failure code set by the gateway (never parsed from text)."""

    HTTP = "http"  # Non-2xx response, see status_code
    RATE_LIMITED = "rate_limited"  # Explicit throttling signal without a 429
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"


@dataclass(frozen=True)
class GatewayError:
    """A failed remote call.

    Attributes:
        message: Human-readable description.
        code: Structured failure code.
        status_code: HTTP status when a response was received.
        retry_after: Seconds requested by the server before retrying.
    """

    message: str
    code: ErrorCode = ErrorCode.HTTP
    status_code: int | None = None
    retry_after: float | None = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return f"{self.code.value}: {self.message}"


@dataclass(frozen=True)
class ErrorClassification:
    """Retry policy decision for one error."""

    category: ErrorCategory
    retryable: bool
    multiplier: float


RATE_LIMIT = ErrorClassification(ErrorCategory.RATE_LIMIT, True, 2.0)
NETWORK = ErrorClassification(ErrorCategory.NETWORK, True, 1.5)
SERVER = ErrorClassification(ErrorCategory.SERVER, True, 2.0)
AUTHENTICATION = ErrorClassification(ErrorCategory.AUTHENTICATION, False, 1.0)
PERMISSION = ErrorClassification(ErrorCategory.PERMISSION, False, 1.0)
NOT_FOUND = ErrorClassification(ErrorCategory.NOT_FOUND, False, 1.0)
VALIDATION = ErrorClassification(ErrorCategory.VALIDATION, False, 1.0)
UNKNOWN = ErrorClassification(ErrorCategory.UNKNOWN, True, 1.5)


def classify_error(error: GatewayError) -> ErrorClassification:
    """Classify a failed call. First matching rule wins.

    Args:
        error: The gateway error.

    Returns:
        Category, retryability and backoff multiplier.
    """
    status = error.status_code

    if status == 429 or error.code == ErrorCode.RATE_LIMITED:
        return RATE_LIMIT
    if error.code in (ErrorCode.NETWORK, ErrorCode.TIMEOUT) or status in (502, 503, 504):
        return NETWORK
    if status is not None and 500 <= status < 600:
        return SERVER
    if status == 401:
        return AUTHENTICATION
    if status == 403:
        return PERMISSION
    if status == 404:
        return NOT_FOUND
    if status in (400, 422):
        return VALIDATION
    return UNKNOWN


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class PermissionDeniedError(APIError):
    """Token lacks the required access scope."""


class NotFoundError(APIError):
    """Resource not found."""


class ValidationError(APIError):
    """Request rejected as invalid."""


class RateLimitError(APIError):
    """Request throttled by the remote API."""


def to_exception(error: GatewayError) -> APIError:
    """Build the exception matching a gateway error."""
    exc_type: type[APIError] = {
        ErrorCategory.AUTHENTICATION: AuthenticationError,
        ErrorCategory.PERMISSION: PermissionDeniedError,
        ErrorCategory.NOT_FOUND: NotFoundError,
        ErrorCategory.VALIDATION: ValidationError,
        ErrorCategory.RATE_LIMIT: RateLimitError,
    }.get(classify_error(error).category, APIError)
    return exc_type(str(error), error.status_code)
