"""
External User Agent.

Presents the provider's authorization page in the system browser and
relays how the attempt ended back to the handshake controller.

The browser cannot hand the redirect to the process directly: the app
registers its callback scheme (``brewnet://``) with the OS, and whatever
receives that URI calls :meth:`SystemBrowserLauncher.deliver_callback`
(or ``OAuthHandshakeController.handle_callback``).  A user who closes the
browser instead is reported through :meth:`SystemBrowserLauncher.cancel`.
"""

from __future__ import annotations

import threading
import webbrowser
from typing import Callable, Optional, Protocol
from urllib.parse import urlparse

from pydantic import BaseModel

from brewnet.logger import StructuredLogger
from brewnet.services.base_service import BaseService


class UserAgentOutcome(BaseModel):
    """How one user-agent session ended.  Exactly one field is meaningful."""

    callback_url: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False


UserAgentCompletion = Callable[[UserAgentOutcome], None]


class UserAgentLauncher(Protocol):
    """Opens an authorization URL and reports the outcome once."""

    def launch(
        self, url: str, callback_scheme: str, on_finish: UserAgentCompletion,
    ) -> bool: ...


class SystemBrowserLauncher(BaseService):
    """Launch the authorization page with the OS default browser.

    Parameters
    ----------
    logger:
        Structured logger instance.
    opener:
        Callable that opens a URL and reports whether the OS accepted it.
        Defaults to :func:`webbrowser.open`.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        opener: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        super().__init__(logger)
        self._opener: Callable[[str], bool] = opener
        self._lock: threading.Lock = threading.Lock()
        self._pending: Optional[UserAgentCompletion] = None
        self._callback_scheme: str = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def launch(
        self, url: str, callback_scheme: str, on_finish: UserAgentCompletion,
    ) -> bool:
        """Open *url*; ``on_finish`` fires once the attempt ends.

        A new launch replaces any session still waiting for its callback.

        Returns
        -------
        bool
            ``True`` if the OS accepted the open request.
        """
        with self._lock:
            self._pending = on_finish
            self._callback_scheme = callback_scheme

        try:
            opened: bool = bool(self._opener(url))
        except webbrowser.Error as exc:
            self._logger.error("Browser launch failed: %s", exc)
            opened = False

        if not opened:
            with self._lock:
                self._pending = None
            self._logger.error("No browser accepted the authorization URL.")
            return False

        self._logger.info(
            "Authorization page opened in system browser.",
            extra={"event": "OAUTH_AGENT_LAUNCHED"},
        )
        return True

    def deliver_callback(self, url: str) -> bool:
        """Hand a ``brewnet://`` redirect to the waiting session.

        Returns ``False`` when nothing is waiting or the scheme does not
        match the one the session was launched with.
        """
        with self._lock:
            if self._pending is None:
                self._logger.warning("Callback received with no session waiting.")
                return False
            if urlparse(url).scheme != self._callback_scheme:
                self._logger.warning(
                    "Ignoring callback with unexpected scheme '%s'.",
                    urlparse(url).scheme,
                )
                return False
            on_finish = self._take_pending()

        on_finish(UserAgentOutcome(callback_url=url))
        return True

    def cancel(self) -> None:
        """Report that the user dismissed the browser without completing."""
        with self._lock:
            on_finish = self._take_pending()
        if on_finish is not None:
            on_finish(UserAgentOutcome(cancelled=True))

    def report_error(self, message: str) -> None:
        """Report an error raised by the browser session itself."""
        with self._lock:
            on_finish = self._take_pending()
        if on_finish is not None:
            on_finish(UserAgentOutcome(error=message))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _take_pending(self) -> Optional[UserAgentCompletion]:
        on_finish, self._pending = self._pending, None
        return on_finish
