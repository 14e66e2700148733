"""
SingleFlight - Shares one in-flight execution between concurrent callers.

When several coroutines ask for the same key while a call is running,
only the first one starts the work; the rest await the same task and
receive the same result or the same exception.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class SingleFlight:
    """
    Keyed single-flight coordinator.

    Usage:
        flight = SingleFlight()

        async def refresh():
            return await flight.do("credential", lambda: call_refresh_endpoint())
    """

    def __init__(self, name: str = "single-flight"):
        self._name = name
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._stats = SingleFlightStats()

    async def do(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Execute fn once per flight of the given key.

        Args:
            key: Identifier of the shared work
            fn: Async function to execute if nothing is in flight for key

        Returns:
            Result of the (possibly shared) execution
        """
        task = self._in_flight.get(key)
        if task is not None and not task.done():
            self._stats.shared += 1
            logger.debug(f"[{self._name}] Joining in-flight call: {key}")
        else:
            self._stats.started += 1
            logger.debug(f"[{self._name}] Starting call: {key}")
            task = asyncio.create_task(fn())
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))

        # A cancelled waiter must not cancel the work the others are waiting on
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[{self._name}] Call failed: {key}: {task.exception()!r}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def get_stats(self) -> "SingleFlightStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    async def cancel_all(self) -> int:
        """Cancel all in-flight calls."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        return count


class SingleFlightStats:
    """Statistics for single-flight coordination."""

    def __init__(self):
        self.started: int = 0  # Executions actually started
        self.shared: int = 0  # Callers that joined an in-flight execution
        self.in_flight: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "shared": self.shared,
            "in_flight": self.in_flight,
        }
