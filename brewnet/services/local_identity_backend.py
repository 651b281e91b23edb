"""
Local Identity Backend.

Serves identities from the SQLite ``local_users`` table.  Used when
``IDENTITY_MODE`` is ``local`` and, in ``remote_with_local_fallback`` mode,
for a primary operation whose remote attempt failed with a network error.

Passwords are stored as PBKDF2-HMAC-SHA256 hashes with a per-user random
salt.  Signing in with an email that has no local account registers it on
the spot, with the display name taken from the email's local part.

Provider profile imports only exist on the remote backend; the import
operations raise ``IdentityBackendError`` here.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import sqlite3
import uuid
from typing import Any, Optional

from brewnet.config import AppConfig
from brewnet.logger import StructuredLogger
from brewnet.models.enums import ImportStatus
from brewnet.models.user import IdentityRecord, phone_placeholder_email
from brewnet.repositories.local_user_repository import LocalUserRepository, StoredCredentials
from brewnet.services.base_service import BaseService
from brewnet.services.identity_backend import (
    AuthenticatedIdentity,
    IdentityAttributes,
    IdentityBackendError,
    entitlement_has_lapsed,
    trial_window,
)


class LocalIdentityBackend(BaseService):
    """SQLite-backed implementation of ``IdentityBackend``.

    Parameters
    ----------
    repo:
        Access to the ``local_users`` table.
    config:
        Supplies ``LOCAL_PASSWORD_KDF_ITERATIONS`` and ``TRIAL_DAYS``.
    logger:
        Structured logger.
    """

    name: str = "local"

    def __init__(
        self,
        repo: LocalUserRepository,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._repo: LocalUserRepository = repo
        self._config: AppConfig = config
        self._iterations: int = config.LOCAL_PASSWORD_KDF_ITERATIONS

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> tuple[str, str]:
        """Return a ``(hex_hash, hex_salt)`` pair for *password*."""
        salt: bytes = os.urandom(32)
        pw_hash: str = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt, iterations=self._iterations,
        ).hex()
        return pw_hash, salt.hex()

    def verify_password(self, password: str, credentials: StoredCredentials) -> bool:
        if credentials.password_hash is None or credentials.password_salt is None:
            return False
        computed: str = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            bytes.fromhex(credentials.password_salt),
            iterations=self._iterations,
        ).hex()
        return hmac.compare_digest(computed, credentials.password_hash)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> AuthenticatedIdentity:
        credentials: Optional[StoredCredentials] = self._repo.get_credentials(email)

        if credentials is None:
            name: str = email.split("@")[0] or "User"
            self._logger.info(
                "No local account for %s; registering it.",
                email,
                extra={"event": "LOCAL_AUTO_REGISTER"},
            )
            return self.sign_up(email, password, {"name": name})

        if not self.verify_password(password, credentials):
            raise IdentityBackendError(
                "Invalid login credentials", code="invalid_credentials", status=400,
            )

        self._repo.touch_last_login(credentials.user_id)
        return AuthenticatedIdentity(user_id=credentials.user_id, email=email.strip().lower())

    def sign_up(
        self,
        identifier: str,
        secret: str,
        attributes: IdentityAttributes,
        phone: bool = False,
    ) -> AuthenticatedIdentity:
        if phone and self._repo.get_by_phone(identifier) is not None:
            raise IdentityBackendError(
                "Phone number already registered", code="phone_exists", status=422,
            )
        if not phone and self._repo.get_by_email(identifier) is not None:
            raise IdentityBackendError(
                "User already registered", code="user_already_exists", status=422,
            )

        user_id: str = str(uuid.uuid4())
        email: str = phone_placeholder_email(identifier) if phone else identifier
        record = IdentityRecord.new(
            user_id=user_id,
            email=email,
            name=str(attributes.get("name") or email.split("@")[0]),
            phone_number=identifier if phone else None,
        )
        pw_hash, pw_salt = self.hash_password(secret)
        try:
            self._repo.insert(record, password_hash=pw_hash, password_salt=pw_salt)
        except sqlite3.IntegrityError as exc:
            raise IdentityBackendError(
                f"duplicate key value violates unique constraint: {exc}",
                code="23505",
                status=409,
            ) from exc

        return AuthenticatedIdentity(
            user_id=user_id,
            email=None if phone else record.email.strip().lower(),
            phone=identifier if phone else None,
        )

    def sign_out(self) -> None:
        self._logger.debug("Local backend has no server-side session to revoke.")

    # ------------------------------------------------------------------
    # Identity records
    # ------------------------------------------------------------------

    def get_identity_record(self, user_id: str) -> Optional[IdentityRecord]:
        return self._repo.get_by_id(user_id)

    def create_identity_record(self, record: IdentityRecord) -> IdentityRecord:
        """Insert *record*, or align the row ``sign_up`` already created."""
        existing: Optional[IdentityRecord] = self._repo.get_by_id(record.id)
        if existing is None:
            try:
                return self._repo.insert(record)
            except sqlite3.IntegrityError as exc:
                raise IdentityBackendError(
                    f"duplicate key value violates unique constraint: {exc}",
                    code="23505",
                    status=409,
                ) from exc

        updated: Optional[IdentityRecord] = self._repo.update(
            record.id,
            {
                "email": record.email.strip().lower(),
                "name": record.name,
                "phone_number": record.phone_number,
            },
        )
        return updated or existing

    def update_identity_record(
        self, user_id: str, fields: dict[str, Any],
    ) -> Optional[IdentityRecord]:
        if "avatar_url" in fields:
            # The local table has no image column.
            fields = {k: v for k, v in fields.items() if k != "avatar_url"}
        return self._repo.update(user_id, fields)

    def get_extended_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        return None

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def grant_trial_entitlement(self, user_id: str) -> None:
        self._repo.update(user_id, trial_window(self._config.TRIAL_DAYS))

    def check_and_correct_entitlement_expiry(self, user_id: str) -> bool:
        if not entitlement_has_lapsed(self._repo.get_by_id(user_id)):
            return False
        self._repo.update(user_id, {"is_pro": False})
        return True

    # ------------------------------------------------------------------
    # Profile imports
    # ------------------------------------------------------------------

    def update_import_status(self, import_id: str, status: ImportStatus) -> None:
        raise IdentityBackendError(
            "Profile imports require the remote backend.", code="unsupported",
        )

    def log_import_action(
        self, import_id: str, action: str, detail: dict[str, Any],
    ) -> None:
        raise IdentityBackendError(
            "Profile imports require the remote backend.", code="unsupported",
        )
