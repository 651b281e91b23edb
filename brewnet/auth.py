"""
Authentication & Session State.

Provides an injectable ``SessionManager`` that holds the current
``Session`` and the observable ``AuthState`` for the lifetime of the
process.

Usage::

    from brewnet.auth import SessionManager
    from brewnet.models.user import Session

    session_manager = SessionManager(logger)
    session_manager.subscribe(lambda state: print(state.status))
    session_manager.mark_unauthenticated()          # startup
    session_manager.set_current_user(Session(email="a@b.co", name="A"))
    user = session_manager.get_current_user()
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from brewnet.logger import StructuredLogger
from brewnet.models.auth_models import AuthState
from brewnet.models.enums import AuthStatus
from brewnet.models.user import Session

AuthStateListener = Callable[[AuthState], None]

# Permitted status transitions.  AUTHENTICATED -> AUTHENTICATED is not a
# transition: replacing the session keeps the status and only updates
# ``current_user``.  Only ``clear()`` may leave AUTHENTICATED.
_ALLOWED_TRANSITIONS: frozenset[tuple[AuthStatus, AuthStatus]] = frozenset({
    (AuthStatus.LOADING, AuthStatus.UNAUTHENTICATED),
    (AuthStatus.LOADING, AuthStatus.AUTHENTICATED),
    (AuthStatus.UNAUTHENTICATED, AuthStatus.AUTHENTICATED),
    (AuthStatus.AUTHENTICATED, AuthStatus.UNAUTHENTICATED),
})


class InvalidAuthTransition(RuntimeError):
    """Raised when code attempts a status change the state machine forbids."""


class SessionManager:
    """Injectable holder for the current session and auth state.

    Each instance maintains its own state, eliminating the need for
    module-level globals.  Pass a single ``SessionManager`` through the
    composition root so every component shares the same session.

    Listeners registered with :meth:`subscribe` receive the new
    ``AuthState`` after every change to status or current user.  They
    are invoked outside the internal lock; listener errors are logged
    and never propagate into the mutating operation.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._lock: threading.RLock = threading.RLock()
        self._state: AuthState = AuthState.loading()
        self._current_user: Optional[Session] = None
        self._listeners: list[AuthStateListener] = []

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def auth_state(self) -> AuthState:
        with self._lock:
            return self._state

    @property
    def current_user(self) -> Optional[Session]:
        with self._lock:
            return self._current_user

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a user is currently logged in."""
        with self._lock:
            return self._current_user is not None

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register *listener* and return a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def get_current_user(self) -> Session:
        """Return the authenticated session.

        Raises:
            RuntimeError: If no user is currently authenticated.
        """
        with self._lock:
            if self._current_user is None:
                raise RuntimeError(
                    "No user is currently authenticated. Login required."
                )
            return self._current_user

    def set_current_user(self, user: Session) -> None:
        """Make *user* the current session.

        Moves the status to ``AUTHENTICATED`` when it is not already
        there.  While authenticated, the session is replaced and the
        status is left unchanged.
        """
        with self._lock:
            if self._state.status != AuthStatus.AUTHENTICATED:
                self._check_transition(AuthStatus.AUTHENTICATED)
            self._current_user = user
            self._state = AuthState.authenticated(user)
            snapshot = self._state
        self._notify(snapshot)

    def mark_unauthenticated(self) -> None:
        """Settle the startup ``LOADING`` state without a session.

        Raises:
            InvalidAuthTransition: If a session is current; only
                :meth:`clear` ends an authenticated session.
        """
        with self._lock:
            if self._state.status == AuthStatus.UNAUTHENTICATED:
                return
            if self._state.status != AuthStatus.LOADING:
                raise InvalidAuthTransition(
                    f"Auth state cannot move from {self._state.status} to "
                    f"{AuthStatus.UNAUTHENTICATED} without clearing the session."
                )
            self._state = AuthState.unauthenticated()
            snapshot = self._state
        self._notify(snapshot)

    def clear(self) -> None:
        """Remove the current session, ending it (logout)."""
        with self._lock:
            self._current_user = None
            if self._state.status == AuthStatus.UNAUTHENTICATED:
                return
            self._check_transition(AuthStatus.UNAUTHENTICATED)
            self._state = AuthState.unauthenticated()
            snapshot = self._state
        self._notify(snapshot)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_transition(self, target: AuthStatus) -> None:
        current: AuthStatus = self._state.status
        if (current, target) not in _ALLOWED_TRANSITIONS:
            raise InvalidAuthTransition(
                f"Auth state cannot move from {current} to {target}."
            )

    def _notify(self, state: AuthState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                self._logger.logger.exception("Auth state listener %r failed.", listener)
