"""
OAuth Handshake & Profile Import Models.

Typed values exchanged between ``OAuthHandshakeController``,
``TokenExchangeClient`` and ``AuthService``.  None of these are ever
persisted; the handshake context in particular lives only for the
duration of one authorization attempt.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from brewnet.models.auth_models import ERROR_MESSAGES, AuthErrorCode
from brewnet.models.enums import HandshakeStatus

# Provider profile as returned by the backend or assembled from the
# provider's profile + email endpoints.  Keys follow the provider's
# own naming (``localizedFirstName``, ``email``, ``pictureUrl``...).
ImportedProfile = dict[str, Any]


class HandshakeContext(BaseModel):
    """One in-flight authorization attempt.

    Attributes
    ----------
    state:
        Random anti-forgery token sent as the OAuth ``state`` parameter.
    started_at:
        When ``begin()`` created the context.
    is_authenticating:
        ``True`` until the attempt reaches a terminal state.
    """

    state: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_authenticating: bool = True


class ExchangeResult(BaseModel):
    """Outcome of converting an authorization code into a profile."""

    success: bool
    profile: Optional[ImportedProfile] = None
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, profile: ImportedProfile) -> "ExchangeResult":
        return cls(success=True, profile=profile)

    @classmethod
    def fail(cls, reason: str) -> "ExchangeResult":
        return cls(
            success=False,
            error_code=AuthErrorCode.EXCHANGE_FAILED,
            error_message=reason,
        )


class ImportResult(BaseModel):
    """Outcome of the backend profile-import call.

    The backend stores the imported profile as a pending import row;
    ``import_id`` identifies it for the later confirmation step.
    """

    success: bool
    profile: Optional[ImportedProfile] = None
    import_id: Optional[str] = None
    error_message: Optional[str] = None


class HandshakeResult(BaseModel):
    """Terminal result of one handshake, returned to whoever called
    ``begin()``."""

    model_config = ConfigDict(frozen=True)

    status: HandshakeStatus
    profile: Optional[ImportedProfile] = None
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == HandshakeStatus.COMPLETED and self.error_code is None

    @classmethod
    def failed(
        cls,
        code: AuthErrorCode,
        message: Optional[str] = None,
        status: HandshakeStatus = HandshakeStatus.FAILED,
    ) -> "HandshakeResult":
        return cls(
            status=status,
            error_code=code,
            error_message=message or ERROR_MESSAGES[code],
        )


class PlatformCredential(BaseModel):
    """Platform Sign-In credential (e.g. Sign in with Apple).

    ``subject`` is the stable per-user identifier issued by the platform.
    ``email`` and the name parts are only delivered on the very first
    sign-in, so every one of them may be absent.
    """

    subject: str
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
