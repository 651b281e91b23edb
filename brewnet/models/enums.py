"""
Shared Enumerations for BrewNet Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so values
read from configuration or the backend compare directly.
"""

from __future__ import annotations
from enum import StrEnum


class AuthStatus(StrEnum):
    """Tri-state projection of whether a Session exists.

    ``LOADING`` is the initial value before the startup check completes.
    Auto-login is disabled, so startup always settles on
    ``UNAUTHENTICATED``.
    """

    LOADING = "LOADING"
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class IdentityMode(StrEnum):
    """Which identity backend(s) the orchestrator uses.

    ``REMOTE_WITH_LOCAL_FALLBACK`` retries a primary operation against the
    local backend only when the remote attempt was classified as a
    network error.
    """

    REMOTE = "remote"
    LOCAL = "local"
    REMOTE_WITH_LOCAL_FALLBACK = "remote_with_local_fallback"


class HandshakeStatus(StrEnum):
    """OAuth handshake state machine."""

    IDLE = "IDLE"
    AWAITING_CALLBACK = "AWAITING_CALLBACK"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CSRF_MISMATCH = "CSRF_MISMATCH"


class ImportStatus(StrEnum):
    """Lifecycle of an imported provider profile on the backend."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
