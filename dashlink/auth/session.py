"""
Session-termination notifications.

The session owner (e.g. whatever shows the login view) subscribes here; the
client calls notify_expired once per terminal authentication failure.
"""

from typing import Callable, Protocol

from loguru import logger


class SessionListener(Protocol):
    def __call__(self, reason: str) -> None: ...


class SessionEvents:
    """Explicit observer list for session expiry."""

    def __init__(self):
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify_expired(self, reason: str) -> None:
        logger.warning(f"Session expired: {reason}")
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception(f"Session listener {listener!r} failed")
