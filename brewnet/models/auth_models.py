"""
Authentication Pipeline Models.

Pydantic models and enumerations for the auth request/response
contracts between ``AuthService`` and the UI layer.

Every auth operation returns a structured, inspectable ``AuthResult``
rather than raising across the public boundary.  Failures carry exactly
one ``AuthErrorCode`` plus a stable human-readable message.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from brewnet.models.enums import AuthStatus
from brewnet.models.user import Session


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories.

    Used by ``AuthService`` and ``OAuthHandshakeController`` to classify
    failures and by the UI layer to decide which feedback to display.
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_EMAIL = "invalid_email"
    INVALID_PHONE = "invalid_phone"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    PHONE_ALREADY_EXISTS = "phone_already_exists"
    NETWORK_ERROR = "network_error"
    UNKNOWN_ERROR = "unknown_error"
    CSRF_MISMATCH = "csrf_mismatch"
    CALLBACK_INVALID = "callback_invalid"
    EXCHANGE_FAILED = "exchange_failed"
    URL_CONSTRUCTION_FAILED = "url_construction_failed"


ERROR_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid email/phone or password",
    AuthErrorCode.INVALID_EMAIL: "Please enter a valid email address",
    AuthErrorCode.INVALID_PHONE: "Please enter a valid phone number",
    AuthErrorCode.EMAIL_ALREADY_EXISTS: "An account with this email already exists",
    AuthErrorCode.PHONE_ALREADY_EXISTS: "An account with this phone number already exists",
    AuthErrorCode.NETWORK_ERROR: (
        "Network connection failed, please check your network settings"
    ),
    AuthErrorCode.UNKNOWN_ERROR: "Something went wrong, please try again later",
    AuthErrorCode.CSRF_MISMATCH: "State mismatch - possible CSRF attack",
    AuthErrorCode.CALLBACK_INVALID: "Invalid callback URL or missing authorization code",
    AuthErrorCode.EXCHANGE_FAILED: "Profile import failed",
    AuthErrorCode.URL_CONSTRUCTION_FAILED: "Failed to create authorization URL",
}


# ---------------------------------------------------------------------------
# Provider error-code mapping
# ---------------------------------------------------------------------------
# Structured codes reported by Supabase Auth (``AuthApiError.code``) and
# PostgREST (``APIError.code``).  Consulted before any message matching.

PROVIDER_ERROR_CODE_MAP: dict[str, AuthErrorCode] = {
    "invalid_credentials": AuthErrorCode.INVALID_CREDENTIALS,
    "invalid_grant": AuthErrorCode.INVALID_CREDENTIALS,
    "weak_password": AuthErrorCode.INVALID_CREDENTIALS,
    "email_not_confirmed": AuthErrorCode.INVALID_EMAIL,
    "email_address_invalid": AuthErrorCode.INVALID_EMAIL,
    "user_already_exists": AuthErrorCode.EMAIL_ALREADY_EXISTS,
    "email_exists": AuthErrorCode.EMAIL_ALREADY_EXISTS,
    "phone_exists": AuthErrorCode.PHONE_ALREADY_EXISTS,
    "23505": AuthErrorCode.EMAIL_ALREADY_EXISTS,  # unique_violation
}

# Degraded path: lowercase substrings of human-readable provider messages.
# Order matters: the first matching entry wins.
PROVIDER_MESSAGE_PATTERNS: tuple[tuple[str, AuthErrorCode], ...] = (
    ("already registered", AuthErrorCode.EMAIL_ALREADY_EXISTS),
    ("already exists", AuthErrorCode.EMAIL_ALREADY_EXISTS),
    ("duplicate key", AuthErrorCode.EMAIL_ALREADY_EXISTS),
    ("invalid login credentials", AuthErrorCode.INVALID_CREDENTIALS),
    ("invalid password", AuthErrorCode.INVALID_CREDENTIALS),
    ("email not confirmed", AuthErrorCode.INVALID_EMAIL),
    ("invalid email", AuthErrorCode.INVALID_CREDENTIALS),
    ("password", AuthErrorCode.INVALID_CREDENTIALS),
)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes the validation rule.
    error_message:
        Human-readable description of the failure, or ``None`` on success.
    """

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every ``AuthService`` operation.

    The UI layer inspects ``success`` to decide the happy-path vs.
    error-path rendering, and uses ``error_code`` to pick the feedback.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success).
    session:
        The session that became current, when the operation produced one.
    is_offline_login:
        ``True`` when the identity was served by the local backend
        after the remote backend was unreachable.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    session: Optional[Session] = None
    is_offline_login: bool = False

    model_config = {"from_attributes": True}

    @classmethod
    def ok(cls, session: Optional[Session] = None, is_offline_login: bool = False) -> "AuthResult":
        return cls(success=True, session=session, is_offline_login=is_offline_login)

    @classmethod
    def fail(cls, code: AuthErrorCode, message: Optional[str] = None) -> "AuthResult":
        """Build a failure carrying *code* and its default message unless
        a more specific *message* is supplied."""
        return cls(
            success=False,
            error_code=code,
            error_message=message or ERROR_MESSAGES[code],
        )


# ---------------------------------------------------------------------------
# Observable state and events
# ---------------------------------------------------------------------------

class AuthState(BaseModel):
    """Tri-state projection of Session existence.

    ``session`` is set only when ``status`` is ``AUTHENTICATED``.
    """

    model_config = ConfigDict(frozen=True)

    status: AuthStatus = AuthStatus.LOADING
    session: Optional[Session] = None

    @classmethod
    def loading(cls) -> "AuthState":
        return cls(status=AuthStatus.LOADING)

    @classmethod
    def authenticated(cls, session: Session) -> "AuthState":
        return cls(status=AuthStatus.AUTHENTICATED, session=session)

    @classmethod
    def unauthenticated(cls) -> "AuthState":
        return cls(status=AuthStatus.UNAUTHENTICATED)


class AuthEvent(BaseModel):
    """Failure notification delivered to the UI on the event channel."""

    model_config = ConfigDict(frozen=True)

    kind: AuthErrorCode
    message: str
    operation: str = ""
