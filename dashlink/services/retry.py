"""
RetryPolicy - Bounded exponential backoff configuration for a call site.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dashlink.services.errors import ErrorKind

if TYPE_CHECKING:
    from dashlink.settings import Settings

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT_ERROR})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_statuses: frozenset[int] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_STATUSES
    )
    retryable_error_kinds: frozenset[ErrorKind] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_KINDS
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.base_delay
        for _ in range(attempt - 1):
            if delay >= self.max_delay:
                break
            delay *= self.backoff_multiplier
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )
