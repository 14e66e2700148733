"""
Service layer infrastructure - resilience patterns for backend API calls.

Provides:
- CircuitBreaker: Per-service load shedding during outages
- ErrorClassifier: Retry decisions and user-facing messages
- SingleFlight: One shared execution for concurrent callers
- ResilientClient: Authenticated client combining all patterns
- StateReconciler: Identity-based merge of fetched collections
"""

from dashlink.services.errors import (
    AuthenticationError,
    CircuitOpenError,
    ClientRequestError,
    ErrorClassification,
    ErrorKind,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    ServiceError,
    TransientError,
    UnknownServiceError,
)
from dashlink.services.retry import RetryPolicy
from dashlink.services.classifier import ErrorClassifier
from dashlink.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from dashlink.services.single_flight import SingleFlight
from dashlink.services.client import RequestSpec, ResilientClient
from dashlink.services.reconciler import (
    ConflictDescriptor,
    ConflictKind,
    Provenance,
    StateReconciler,
)

__all__ = [
    # Errors
    "ServiceError",
    "AuthenticationError",
    "CircuitOpenError",
    "TransientError",
    "ServerError",
    "NetworkError",
    "RequestTimeoutError",
    "ClientRequestError",
    "UnknownServiceError",
    "ErrorKind",
    "ErrorClassification",
    # Retry / classification
    "RetryPolicy",
    "ErrorClassifier",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Single flight
    "SingleFlight",
    # Client
    "RequestSpec",
    "ResilientClient",
    # Reconciliation
    "StateReconciler",
    "ConflictDescriptor",
    "ConflictKind",
    "Provenance",
]
