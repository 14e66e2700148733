"""
CircuitBreaker - Sheds load from a failing backend capability.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Dependency is failing, calls are rejected without being invoked
- HALF_OPEN: One trial call is let through to test recovery

Transitions:
- CLOSED → OPEN: When consecutive failures reach failure_threshold
- OPEN → HALF_OPEN: Once reset_timeout has passed since the last failure
- HALF_OPEN → CLOSED: On successful trial
- HALF_OPEN → OPEN: On failed trial (last failure time is refreshed)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from dashlink.services.errors import CircuitOpenError

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking calls
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Time before half-open


# Per-capability settings of the dashboard backend
SERVICE_BREAKER_CONFIGS: dict[str, CircuitBreakerConfig] = {
    "tasks": CircuitBreakerConfig(failure_threshold=3, reset_timeout=timedelta(seconds=30)),
    "playgrounds": CircuitBreakerConfig(
        failure_threshold=3, reset_timeout=timedelta(seconds=30)
    ),
    "preview": CircuitBreakerConfig(failure_threshold=5, reset_timeout=timedelta(seconds=60)),
    "udfs": CircuitBreakerConfig(failure_threshold=3, reset_timeout=timedelta(seconds=30)),
}


class CircuitBreaker:
    """
    Circuit breaker for a single service key.

    Usage:
        cb = CircuitBreaker("tasks")
        result = await cb.execute(lambda: fetch_tasks())
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()

        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for the OPEN → HALF_OPEN transition."""
        if self._state == CircuitState.OPEN and self._reset_timeout_elapsed():
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> datetime | None:
        return self._last_failure_time

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation through the breaker.

        Args:
            operation: Zero-argument coroutine factory, invoked only if admitted

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: If the breaker rejects the call
        """
        # Gate and bookkeeping never await, so each runs atomically on the loop
        if not self.can_request():
            raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)
        is_trial = self._state == CircuitState.HALF_OPEN
        if is_trial:
            self._trial_in_flight = True

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    def can_request(self) -> bool:
        """Check if a call is allowed."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight

        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            # Only consecutive failures count
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    def _reset_timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.config.reset_timeout

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._trial_in_flight = False
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._trial_in_flight = False
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._last_failure_time:
            return None

        reset_at = self._last_failure_time + self.config.reset_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.config.failure_threshold,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    One breaker per service key, created on first use and kept for the
    lifetime of the owning context.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("tasks")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        service_configs: dict[str, CircuitBreakerConfig] | None = None,
        clock: Clock = utc_now,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._service_configs = dict(
            SERVICE_BREAKER_CONFIGS if service_configs is None else service_configs
        )
        self._clock = clock

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                config or self._service_configs.get(service_id, self._default_config),
                clock=self._clock,
            )
        return self._breakers[service_id]

    def peek(self, service_id: str) -> CircuitBreaker | None:
        """Get an existing breaker without creating one."""
        return self._breakers.get(service_id)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of services with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
