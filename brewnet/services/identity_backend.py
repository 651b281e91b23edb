"""
Identity Backend Contract and Remote Implementation.

``IdentityBackend`` is the seam between ``AuthService`` and whatever
authority owns user identities.  Two implementations exist:

- :class:`SupabaseIdentityBackend` (this module): GoTrue auth plus the
  backend's ``users``/``profiles``/import tables.
- :class:`~brewnet.services.local_identity_backend.LocalIdentityBackend`:
  SQLite with PBKDF2 password hashes, used in ``local`` mode and as the
  offline fallback.

Backends raise on failure.  ``AuthService`` classifies every exception
into an ``AuthErrorCode``; nothing here returns error sentinels.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from brewnet.config import AppConfig
from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.enums import ImportStatus
from brewnet.models.user import IdentityRecord
from brewnet.repositories.remote_user_repository import RemoteUserRepository
from brewnet.services.base_service import BaseService
from brewnet.utils.pro_expiry import parse_pro_end

IdentityAttributes = dict[str, Any]


class AuthenticatedIdentity(BaseModel):
    """The subject a backend vouched for after sign-in or sign-up."""

    user_id: str
    email: Optional[str] = None
    phone: Optional[str] = None


class IdentityBackendError(Exception):
    """Backend failure carrying the provider's structured error code.

    Parameters
    ----------
    message:
        Human-readable provider message.
    code:
        Structured provider code (e.g. ``"user_already_exists"``), used
        before any message matching during classification.
    status:
        HTTP-like status, when one applies.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.message: str = message
        self.code: Optional[str] = code
        self.status: Optional[int] = status
        super().__init__(message)


@runtime_checkable
class IdentityBackend(Protocol):
    """Operations ``AuthService`` needs from an identity authority."""

    name: str

    def authenticate(self, email: str, password: str) -> AuthenticatedIdentity: ...

    def sign_up(
        self,
        identifier: str,
        secret: str,
        attributes: IdentityAttributes,
        phone: bool = False,
    ) -> AuthenticatedIdentity: ...

    def sign_out(self) -> None: ...

    def get_identity_record(self, user_id: str) -> Optional[IdentityRecord]: ...

    def create_identity_record(self, record: IdentityRecord) -> IdentityRecord: ...

    def update_identity_record(
        self, user_id: str, fields: dict[str, Any],
    ) -> Optional[IdentityRecord]: ...

    def get_extended_profile(self, user_id: str) -> Optional[dict[str, Any]]: ...

    def grant_trial_entitlement(self, user_id: str) -> None: ...

    def check_and_correct_entitlement_expiry(self, user_id: str) -> bool: ...

    def update_import_status(self, import_id: str, status: ImportStatus) -> None: ...

    def log_import_action(
        self, import_id: str, action: str, detail: dict[str, Any],
    ) -> None: ...


def trial_window(trial_days: int, now: Optional[datetime] = None) -> dict[str, Any]:
    """Column values that grant a pro trial of *trial_days* from *now*."""
    start: datetime = now or datetime.now(timezone.utc)
    return {
        "is_pro": True,
        "pro_start": start.isoformat(),
        "pro_end": (start + timedelta(days=trial_days)).isoformat(),
    }


def entitlement_has_lapsed(
    record: Optional[IdentityRecord], now: Optional[datetime] = None,
) -> bool:
    """``True`` when *record* is flagged pro but its window has ended.

    An unparseable ``pro_end`` is left alone here: the session predicate
    already treats it as inactive, and the stored flag is only corrected
    for a window that provably ended.
    """
    if record is None or not record.is_pro or record.pro_end is None:
        return False
    expiry: Optional[datetime] = parse_pro_end(record.pro_end)
    if expiry is None:
        return False
    return expiry <= (now or datetime.now(timezone.utc))


class SupabaseIdentityBackend(BaseService):
    """Remote identity backend over Supabase Auth and PostgREST.

    Parameters
    ----------
    db:
        Database manager exposing the Supabase client.  In offline mode
        every call raises ``RuntimeError``, classified as a network error.
    repo:
        Table access for ``users``, ``profiles`` and the import tables.
    config:
        Supplies ``TRIAL_DAYS``.
    logger:
        Structured logger.
    """

    name: str = "remote"

    def __init__(
        self,
        db: DatabaseManager,
        repo: RemoteUserRepository,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db: DatabaseManager = db
        self._repo: RemoteUserRepository = repo
        self._config: AppConfig = config

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> AuthenticatedIdentity:
        response = self._db.supabase.auth.sign_in_with_password({
            "email": email,
            "password": password,
        })
        user = response.user
        if user is None:
            raise IdentityBackendError(
                "Invalid login credentials", code="invalid_credentials",
            )
        return AuthenticatedIdentity(user_id=str(user.id), email=user.email or email)

    def sign_up(
        self,
        identifier: str,
        secret: str,
        attributes: IdentityAttributes,
        phone: bool = False,
    ) -> AuthenticatedIdentity:
        credentials: dict[str, Any] = {
            "password": secret,
            "options": {"data": attributes},
        }
        credentials["phone" if phone else "email"] = identifier

        response = self._db.supabase.auth.sign_up(credentials)
        user = response.user
        if user is None:
            raise IdentityBackendError("Sign-up returned no user.")

        self._logger.info(
            "Remote sign-up accepted for %s.",
            user.id,
            extra={"event": "REMOTE_SIGN_UP", "user_id": str(user.id)},
        )
        return AuthenticatedIdentity(
            user_id=str(user.id),
            email=None if phone else (user.email or identifier),
            phone=identifier if phone else None,
        )

    def sign_out(self) -> None:
        self._db.supabase.auth.sign_out()

    # ------------------------------------------------------------------
    # Identity records
    # ------------------------------------------------------------------

    def get_identity_record(self, user_id: str) -> Optional[IdentityRecord]:
        return self._repo.get_by_id(user_id)

    def create_identity_record(self, record: IdentityRecord) -> IdentityRecord:
        return self._repo.insert(record)

    def update_identity_record(
        self, user_id: str, fields: dict[str, Any],
    ) -> Optional[IdentityRecord]:
        return self._repo.update(user_id, fields)

    def get_extended_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        return self._repo.get_extended_profile(user_id)

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def grant_trial_entitlement(self, user_id: str) -> None:
        self._repo.update(user_id, trial_window(self._config.TRIAL_DAYS))
        self._logger.info(
            "Granted %d-day pro trial to %s.",
            self._config.TRIAL_DAYS,
            user_id,
            extra={"event": "TRIAL_GRANTED", "user_id": user_id},
        )

    def check_and_correct_entitlement_expiry(self, user_id: str) -> bool:
        record: Optional[IdentityRecord] = self._repo.get_by_id(user_id)
        if not entitlement_has_lapsed(record):
            return False
        self._repo.update(user_id, {"is_pro": False})
        self._logger.info(
            "Pro entitlement for %s expired; flag cleared.",
            user_id,
            extra={"event": "PRO_EXPIRED", "user_id": user_id},
        )
        return True

    # ------------------------------------------------------------------
    # Profile imports
    # ------------------------------------------------------------------

    def update_import_status(self, import_id: str, status: ImportStatus) -> None:
        self._repo.update_import_status(import_id, status)

    def log_import_action(
        self, import_id: str, action: str, detail: dict[str, Any],
    ) -> None:
        self._repo.insert_import_action(import_id, action, detail)
