"""
Auth event channel.

Synchronous in-process pub/sub for ``AuthEvent`` failure notifications.
Listeners run immediately in the publisher's thread, in subscription
order.  Listener errors are logged but never propagate: the operation that
published the event has already produced its ``AuthResult``.

A UI that must touch widgets only from its own thread wraps its listener
in the same ``dispatch`` it gives to ``OperationRunner``.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from brewnet.logger import StructuredLogger
from brewnet.models.auth_models import ERROR_MESSAGES, AuthErrorCode, AuthEvent

AuthEventListener = Callable[[AuthEvent], None]


class AuthEventChannel:
    """Broadcasts auth failures to every subscribed listener."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._listeners: list[AuthEventListener] = []
        self._lock: threading.Lock = threading.Lock()

    def subscribe(self, listener: AuthEventListener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: AuthEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                self._logger.logger.exception(
                    "Auth event listener %r failed for %s (operation=%s)",
                    listener,
                    event.kind,
                    event.operation,
                )

    def publish_failure(
        self,
        kind: AuthErrorCode,
        message: Optional[str] = None,
        operation: str = "",
    ) -> AuthEvent:
        """Build and publish an ``AuthEvent``; returns it for convenience."""
        event = AuthEvent(
            kind=kind,
            message=message or ERROR_MESSAGES[kind],
            operation=operation,
        )
        self.publish(event)
        return event
