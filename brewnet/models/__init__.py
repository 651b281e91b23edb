from __future__ import annotations

"""
Data Models Package.

Re-exports the Pydantic models for convenient imports:
    from brewnet.models import Session, IdentityRecord, AuthResult
    from brewnet.models import AuthStatus, IdentityMode, HandshakeStatus
"""

from brewnet.models.enums import AuthStatus, HandshakeStatus, IdentityMode, ImportStatus
from brewnet.models.user import IdentityRecord, Session
from brewnet.models.auth_models import (
    AuthErrorCode,
    AuthEvent,
    AuthResult,
    AuthState,
    ValidationResult,
)
from brewnet.models.oauth_models import (
    ExchangeResult,
    HandshakeContext,
    HandshakeResult,
    ImportResult,
    PlatformCredential,
)

__all__ = [
    "AuthErrorCode",
    "AuthEvent",
    "AuthResult",
    "AuthState",
    "AuthStatus",
    "ExchangeResult",
    "HandshakeContext",
    "HandshakeResult",
    "HandshakeStatus",
    "IdentityMode",
    "IdentityRecord",
    "ImportResult",
    "ImportStatus",
    "PlatformCredential",
    "Session",
    "ValidationResult",
]
