"""
ErrorClassifier - Maps raw failures to a retry decision and a user-facing category.

| outcome                                   | kind           | retryable |
|-------------------------------------------|----------------|-----------|
| 408, 500, 502, 503, 504                   | server_error   | yes       |
| 429                                       | throttled      | yes       |
| other 4xx                                 | client_error   | no        |
| transport failure (DNS, refused, reset)   | network_error  | yes       |
| deadline exceeded                         | timeout_error  | yes       |
| anything else                             | unknown_error  | no        |

Retryability is decided by the RetryPolicy in use, so a call site can narrow
or widen the retryable statuses and error kinds.
"""

import asyncio

import httpx

from dashlink.services.errors import (
    ClientRequestError,
    ErrorClassification,
    ErrorKind,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    ServiceError,
    UnknownServiceError,
)
from dashlink.services.retry import RetryPolicy

Outcome = httpx.Response | int | BaseException


class ErrorClassifier:
    """
    Classifies responses, status codes and exceptions.

    Usage:
        classifier = ErrorClassifier()
        result = classifier.classify(response)
        if result.retryable:
            ...
    """

    def __init__(self, policy: RetryPolicy | None = None):
        self._policy = policy or RetryPolicy()

    def classify(
        self,
        outcome: Outcome,
        policy: RetryPolicy | None = None,
    ) -> ErrorClassification:
        """
        Classify a failed outcome.

        Args:
            outcome: Response, HTTP status code or raised exception
            policy: Overrides the classifier's default retry policy

        Returns:
            ErrorClassification with kind, retryable flag and user message
        """
        policy = policy or self._policy

        if isinstance(outcome, ServiceError):
            return outcome.classification

        if isinstance(outcome, httpx.Response):
            return self._classify_status(outcome.status_code, policy)

        # bool is an int subclass but never a status code
        if isinstance(outcome, int) and not isinstance(outcome, bool):
            return self._classify_status(outcome, policy)

        if isinstance(outcome, httpx.HTTPStatusError):
            return self._classify_status(outcome.response.status_code, policy)

        if isinstance(outcome, (httpx.TimeoutException, asyncio.TimeoutError)):
            return self._classify_kind(ErrorKind.TIMEOUT_ERROR, policy)

        if isinstance(outcome, (httpx.TransportError, OSError)):
            return self._classify_kind(ErrorKind.NETWORK_ERROR, policy)

        return ErrorClassification.of(ErrorKind.UNKNOWN)

    def user_message(self, outcome: Outcome) -> str:
        """Get user-friendly message for an outcome."""
        return self.classify(outcome).user_message

    def to_error(
        self,
        outcome: httpx.Response | BaseException,
        service_id: str | None = None,
        policy: RetryPolicy | None = None,
        timeout: float | None = None,
    ) -> ServiceError:
        """Build the ServiceError subclass matching an outcome's classification."""
        if isinstance(outcome, ServiceError):
            return outcome

        classification = self.classify(outcome, policy)
        kind = classification.kind

        if isinstance(outcome, httpx.Response):
            status = outcome.status_code
            message = f"HTTP {status}: {outcome.text[:200]}"
            if kind in (ErrorKind.SERVER_ERROR, ErrorKind.THROTTLED):
                error_cls = ServerError
            elif kind == ErrorKind.CLIENT_ERROR:
                error_cls = ClientRequestError
            else:
                error_cls = UnknownServiceError
            return error_cls(
                message,
                service_id=service_id,
                status_code=status,
                classification=classification,
                response=outcome,
            )

        if kind == ErrorKind.TIMEOUT_ERROR:
            return RequestTimeoutError(
                service_id, timeout or 0.0, classification=classification
            )
        if kind == ErrorKind.NETWORK_ERROR:
            return NetworkError(
                str(outcome) or type(outcome).__name__,
                service_id=service_id,
                classification=classification,
            )
        return UnknownServiceError(
            str(outcome) or type(outcome).__name__,
            service_id=service_id,
            classification=classification,
        )

    @staticmethod
    def _classify_status(status: int, policy: RetryPolicy) -> ErrorClassification:
        if status in policy.retryable_statuses:
            kind = ErrorKind.THROTTLED if status == 429 else ErrorKind.SERVER_ERROR
            return ErrorClassification.of(kind, retryable=True)
        if 400 <= status < 500:
            return ErrorClassification.of(ErrorKind.CLIENT_ERROR)
        return ErrorClassification.of(ErrorKind.UNKNOWN)

    @staticmethod
    def _classify_kind(kind: ErrorKind, policy: RetryPolicy) -> ErrorClassification:
        return ErrorClassification.of(kind, retryable=kind in policy.retryable_error_kinds)
