"""
Background Operation Runner.

Auth operations block on the network, so a UI must never call them on
its own thread.  ``OperationRunner`` runs one operation on a daemon
worker thread and hands its ``AuthResult`` back through ``dispatch``,
which schedules a callable on the UI thread (for Tk:
``lambda fn: root.after(0, fn)``).  Headless callers pass a dispatch
that simply invokes the callable.
"""

from __future__ import annotations

import threading
from typing import Callable

from brewnet.logger import StructuredLogger
from brewnet.models.auth_models import AuthErrorCode, AuthResult

Dispatch = Callable[[Callable[[], None]], None]
ResultHandler = Callable[[AuthResult], None]


def call_inline(fn: Callable[[], None]) -> None:
    """Dispatch that runs *fn* immediately on the calling thread."""
    fn()


class OperationRunner:
    """Runs auth operations off the UI thread.

    Parameters
    ----------
    dispatch:
        Schedules a zero-argument callable on the thread that owns the
        UI state.
    logger:
        Structured logger.
    """

    def __init__(self, dispatch: Dispatch, logger: StructuredLogger) -> None:
        self._dispatch: Dispatch = dispatch
        self._logger: StructuredLogger = logger

    def submit(
        self,
        operation: Callable[[], AuthResult],
        on_result: ResultHandler,
        name: str = "auth-operation",
    ) -> threading.Thread:
        """Start *operation* on a daemon thread.

        ``on_result`` receives the operation's ``AuthResult`` through
        ``dispatch``.  An exception escaping the operation is logged and
        delivered as an ``unknown_error`` result.

        Returns
        -------
        threading.Thread
            The started worker, so tests can ``join()`` it.
        """

        def _worker() -> None:
            try:
                result: AuthResult = operation()
            except Exception as exc:
                self._logger.logger.exception("Operation '%s' raised.", name)
                result = AuthResult.fail(AuthErrorCode.UNKNOWN_ERROR, str(exc) or None)
            self._dispatch(lambda: on_result(result))

        thread = threading.Thread(target=_worker, name=name, daemon=True)
        thread.start()
        return thread
