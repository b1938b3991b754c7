"""
Shared error handling for the Book Access Layer.

Every error raised by the access layer carries a structured ``ErrorKind``
assigned where the error is constructed. Retry and fallback decisions read
that tag; they never inspect message text.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Classification tag carried by every access layer error."""
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    CLIENT = "client"
    AUTH = "auth"
    CIRCUIT_OPEN = "circuit_open"
    PERSISTENCE = "persistence"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    kind: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    kind: ErrorKind = ErrorKind.SERVER
    http_status: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        # Number of attempts made before this error surfaced, set by the retry executor.
        self.attempts: Optional[int] = None
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        details = dict(self.details)
        if self.attempts is not None:
            details.setdefault("attempts", self.attempts)
        if self.status_code is not None:
            details.setdefault("status_code", self.status_code)

        return ErrorResponse(
            code=self.code,
            kind=self.kind.value,
            message=self.message,
            retryable=self.retryable,
            details=details,
        )


class ValidationError(AccessLayerException):
    """Malformed caller input. Surfaced before any network attempt."""

    kind = ErrorKind.VALIDATION
    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NetworkError(AccessLayerException):
    """Connectivity failure or timeout talking to an upstream dependency."""

    http_status = 503

    def __init__(
        self,
        message: str = "Network error",
        details: Optional[Dict[str, Any]] = None,
        timeout: bool = False,
    ):
        super().__init__("TIMEOUT_ERROR" if timeout else "NETWORK_ERROR", message, details)
        self.kind = ErrorKind.TIMEOUT if timeout else ErrorKind.NETWORK


class ServerError(AccessLayerException):
    """Upstream answered with a 5xx status."""

    kind = ErrorKind.SERVER
    http_status = 502

    def __init__(self, status_code: int, message: str = "Upstream server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVER_ERROR", message, details, status_code=status_code)


class RateLimitedError(AccessLayerException):
    """Upstream answered with 429."""

    kind = ErrorKind.RATE_LIMITED
    http_status = 429

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details, status_code=429)


class ClientError(AccessLayerException):
    """Upstream rejected the request with a 4xx status other than 429.

    Unexpected non-success statuses outside 4xx and 5xx (unfollowed
    redirects, 1xx) are reported here as well, so they are never retried.
    """

    kind = ErrorKind.CLIENT
    http_status = 400

    def __init__(self, status_code: int, message: str = "Upstream rejected request", details: Optional[Dict[str, Any]] = None):
        super().__init__("CLIENT_ERROR", message, details, status_code=status_code)
        if status_code == 404:
            self.http_status = 404
        elif not 400 <= status_code < 500:
            self.http_status = 502


class AuthError(ClientError):
    """Authentication, authorization or quota rejection (401/403)."""

    kind = ErrorKind.AUTH
    http_status = 502

    def __init__(self, status_code: int, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(status_code, message, details)
        self.code = "AUTH_ERROR"


class CircuitOpenError(AccessLayerException):
    """Synthetic rejection raised by an open circuit breaker."""

    kind = ErrorKind.CIRCUIT_OPEN
    http_status = 503

    def __init__(self, name: str, retry_after: float = 0.0, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("circuit", name)
        details.setdefault("retry_after_seconds", round(max(0.0, retry_after), 3))
        super().__init__("CIRCUIT_OPEN", f"Circuit breaker '{name}' is OPEN - blocking call", details)
        self.name = name
        self.retry_after = retry_after


class PersistenceError(AccessLayerException):
    """Failure reported by the persistence collaborator."""

    kind = ErrorKind.PERSISTENCE
    http_status = 503

    def __init__(self, message: str = "Persistence error", details: Optional[Dict[str, Any]] = None, connectivity: bool = False):
        super().__init__("PERSISTENCE_ERROR", message, details)
        self.connectivity = connectivity
        if connectivity:
            self.kind = ErrorKind.NETWORK


RETRYABLE_KINDS = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.SERVER,
    ErrorKind.RATE_LIMITED,
})


def error_from_status(status_code: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> AccessLayerException:
    """Build the classified error for a non-success upstream status."""
    if status_code == 429:
        return RateLimitedError(details=details) if message is None else RateLimitedError(message, details)
    if status_code == 403:
        return AuthError(status_code, message or "API quota exceeded. Please try again later.", details)
    if status_code == 401:
        return AuthError(status_code, message or "Authorization failed", details)
    if 500 <= status_code < 600:
        return ServerError(status_code, message or f"API request failed: {status_code}", details)
    if 400 <= status_code < 500:
        return ClientError(status_code, message or f"API request failed: {status_code}", details)
    return ClientError(status_code, message or f"Unexpected response status: {status_code}", details)
