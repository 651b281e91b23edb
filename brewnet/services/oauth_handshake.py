"""
OAuth Handshake Controller.

Drives one authorization-code attempt against the OAuth provider::

    IDLE ──begin()──▶ AWAITING_CALLBACK ──▶ COMPLETED
                                        ├──▶ FAILED
                                        └──▶ CSRF_MISMATCH

``begin()`` mints a fresh anti-forgery ``state`` token, builds the
authorization URL and opens it through the external user agent.  The
redirect comes back either through the agent or directly through
:meth:`OAuthHandshakeController.handle_callback` (custom URI scheme
handler).  The callback's ``state`` must equal the pending token; a
mismatch, or a callback with nothing pending, never reaches the token
exchange.

The terminal ``HandshakeResult`` is handed only to the ``on_complete``
callable of the ``begin()`` that produced it.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional
from urllib.parse import parse_qs, quote, urlparse

from brewnet.config import AppConfig
from brewnet.logger import StructuredLogger
from brewnet.models.auth_models import AuthErrorCode
from brewnet.models.enums import HandshakeStatus
from brewnet.models.oauth_models import ExchangeResult, HandshakeContext, HandshakeResult
from brewnet.services.base_service import BaseService
from brewnet.services.token_exchange import TokenExchangeClient
from brewnet.services.user_agent import UserAgentLauncher, UserAgentOutcome

HandshakeCompletion = Callable[[HandshakeResult], None]

# Characters left unescaped in query values besides alphanumerics.
_QUERY_SAFE: str = ":/"


class OAuthHandshakeController(BaseService):
    """Owns the single pending ``HandshakeContext``.

    Parameters
    ----------
    config:
        OAuth client id, redirect URI, scope, authorization endpoint and
        app callback scheme.
    exchange_client:
        Converts the authorization code into a provider profile.
    launcher:
        External user agent that presents the authorization page.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        config: AppConfig,
        exchange_client: TokenExchangeClient,
        launcher: UserAgentLauncher,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._config: AppConfig = config
        self._exchange: TokenExchangeClient = exchange_client
        self._launcher: UserAgentLauncher = launcher
        self._lock: threading.Lock = threading.Lock()
        self._context: Optional[HandshakeContext] = None
        self._on_complete: Optional[HandshakeCompletion] = None
        self._status: HandshakeStatus = HandshakeStatus.IDLE

    @property
    def status(self) -> HandshakeStatus:
        with self._lock:
            return self._status

    @property
    def is_authenticating(self) -> bool:
        with self._lock:
            return self._context is not None and self._context.is_authenticating

    # ------------------------------------------------------------------
    # URL construction
    # ------------------------------------------------------------------

    def build_authorization_url(self, state: str) -> Optional[str]:
        """Return the provider authorization URL for *state*.

        Returns ``None`` when the configured endpoint does not yield an
        absolute http(s) URL.
        """
        cfg = self._config
        url: str = (
            f"{cfg.OAUTH_AUTHORIZATION_ENDPOINT}"
            f"?response_type=code"
            f"&client_id={quote(cfg.OAUTH_CLIENT_ID, safe=_QUERY_SAFE)}"
            f"&redirect_uri={quote(cfg.OAUTH_REDIRECT_URI, safe=_QUERY_SAFE)}"
            f"&state={quote(state, safe=_QUERY_SAFE)}"
            f"&scope={quote(cfg.OAUTH_SCOPE, safe=_QUERY_SAFE)}"
        )
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None
        return url

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin(self, on_complete: HandshakeCompletion) -> None:
        """Start a new attempt; any pending attempt is superseded."""
        context = HandshakeContext()
        url: Optional[str] = self.build_authorization_url(context.state)
        if url is None:
            self._logger.error(
                "Authorization URL could not be built from '%s'.",
                self._config.OAUTH_AUTHORIZATION_ENDPOINT,
            )
            with self._lock:
                if self._context is None:
                    self._status = HandshakeStatus.FAILED
            on_complete(HandshakeResult.failed(AuthErrorCode.URL_CONSTRUCTION_FAILED))
            return

        with self._lock:
            if self._context is not None:
                self._logger.info(
                    "Superseding pending handshake started at %s.",
                    self._context.started_at.isoformat(),
                )
            self._context = context
            self._on_complete = on_complete
            self._status = HandshakeStatus.AWAITING_CALLBACK

        self._logger.info(
            "OAuth handshake started.", extra={"event": "OAUTH_BEGIN"},
        )
        launched: bool = self._launcher.launch(
            url, self._config.OAUTH_APP_SCHEME, self._on_agent_finished,
        )
        if not launched:
            self._finish(
                context.state,
                HandshakeResult.failed(
                    AuthErrorCode.EXCHANGE_FAILED,
                    "Authentication failed: could not open the browser",
                ),
            )

    def handle_callback(self, url: str) -> HandshakeResult:
        """Process a redirect to the app callback URI.

        The result is also delivered to the pending ``on_complete``.
        """
        query = parse_qs(urlparse(url).query)
        code: Optional[str] = _first(query.get("code"))
        state: Optional[str] = _first(query.get("state"))

        with self._lock:
            pending: Optional[HandshakeContext] = self._context

        if not code or not state:
            self._logger.warning(
                "OAuth callback missing code or state.",
                extra={"event": "OAUTH_CALLBACK_INVALID"},
            )
            if pending is None:
                return HandshakeResult.failed(AuthErrorCode.CALLBACK_INVALID)
            return self._finish(
                pending.state, HandshakeResult.failed(AuthErrorCode.CALLBACK_INVALID),
            )

        if pending is None or state != pending.state:
            self._logger.warning(
                "OAuth state mismatch; callback discarded.",
                extra={"event": "OAUTH_CSRF_MISMATCH"},
            )
            mismatch = HandshakeResult.failed(
                AuthErrorCode.CSRF_MISMATCH, status=HandshakeStatus.CSRF_MISMATCH,
            )
            if pending is None:
                with self._lock:
                    self._status = HandshakeStatus.CSRF_MISMATCH
                return mismatch
            return self._finish(pending.state, mismatch)

        exchange: ExchangeResult = self._exchange.exchange_code(code)
        if exchange.success:
            result = HandshakeResult(
                status=HandshakeStatus.COMPLETED, profile=exchange.profile,
            )
        else:
            result = HandshakeResult.failed(
                AuthErrorCode.EXCHANGE_FAILED, exchange.error_message,
            )
        return self._finish(state, result)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_agent_finished(self, outcome: UserAgentOutcome) -> None:
        with self._lock:
            pending: Optional[HandshakeContext] = self._context
        if pending is None:
            return

        if outcome.error is not None:
            self._finish(
                pending.state,
                HandshakeResult.failed(
                    AuthErrorCode.EXCHANGE_FAILED,
                    f"Authentication failed: {outcome.error}",
                ),
            )
        elif outcome.callback_url is not None:
            self.handle_callback(outcome.callback_url)
        else:
            self._logger.info("OAuth attempt cancelled by the user.")
            self._finish(
                pending.state,
                HandshakeResult.failed(AuthErrorCode.CALLBACK_INVALID, "cancelled"),
            )

    def _finish(self, state: str, result: HandshakeResult) -> HandshakeResult:
        """Retire the context for *state* and notify its initiator.

        A context already replaced by a newer ``begin()`` is left alone.
        """
        with self._lock:
            if self._context is None or self._context.state != state:
                return result
            self._context = None
            on_complete, self._on_complete = self._on_complete, None
            self._status = result.status

        self._logger.info(
            "OAuth handshake finished: %s.",
            result.status,
            extra={"event": "OAUTH_FINISHED", "error_code": result.error_code},
        )
        if on_complete is not None:
            on_complete(result)
        return result


def _first(values: Optional[list[str]]) -> Optional[str]:
    return values[0] if values else None
