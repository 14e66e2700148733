"""
Service layer exceptions and error classification types.
"""

from dataclasses import dataclass
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Failure categories produced by the classifier."""

    SERVER_ERROR = "server_error"
    THROTTLED = "throttled"
    CLIENT_ERROR = "client_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    AUTHENTICATION_ERROR = "authentication_error"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown_error"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.SERVER_ERROR: "The server encountered an error. Please try again shortly.",
    ErrorKind.THROTTLED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.CLIENT_ERROR: "Please check your request and try again.",
    ErrorKind.NETWORK_ERROR: "Network connection issue. Please check your connection.",
    ErrorKind.TIMEOUT_ERROR: "The request timed out. Please try again.",
    ErrorKind.AUTHENTICATION_ERROR: "Your session has expired. Please sign in again.",
    ErrorKind.CIRCUIT_OPEN: "Service temporarily unavailable.",
    ErrorKind.UNKNOWN: "An unexpected error occurred.",
}


@dataclass(frozen=True)
class ErrorClassification:
    """Retry decision and user-facing category for a failure."""

    kind: ErrorKind
    retryable: bool
    user_message: str

    @classmethod
    def of(cls, kind: ErrorKind, retryable: bool = False) -> "ErrorClassification":
        return cls(kind=kind, retryable=retryable, user_message=USER_MESSAGES[kind])


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
        classification: ErrorClassification | None = None,
        response: httpx.Response | None = None,
    ):
        self.service_id = service_id
        self.status_code = status_code
        self.classification = classification or ErrorClassification.of(self.kind)
        self.response = response
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return self.classification.user_message


class AuthenticationError(ServiceError):
    """Credential refresh was rejected or a refreshed request is still unauthorized."""

    kind = ErrorKind.AUTHENTICATION_ERROR


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class TransientError(ServiceError):
    """Retryable failure: server, network or timeout."""

    kind = ErrorKind.SERVER_ERROR


class ServerError(TransientError):
    """Retryable HTTP status from the backend."""

    pass


class NetworkError(TransientError):
    """Transport level failure (DNS, refused or reset connection)."""

    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(TransientError):
    """Request timed out."""

    kind = ErrorKind.TIMEOUT_ERROR

    def __init__(self, service_id: str | None, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
            **kwargs,
        )


class ClientRequestError(ServiceError):
    """Non-retryable 4xx response."""

    kind = ErrorKind.CLIENT_ERROR


class UnknownServiceError(ServiceError):
    """Failure that fits no other category."""

    pass
