"""
Just-in-Time Identity Record Provisioning.

A successful sign-in proves the subject exists in the auth layer, but the
backend's ``users`` table may still lack a row for it (accounts created
before the table existed, or a sign-up whose record insert failed).  This
service guarantees a row exists before a ``Session`` is projected from it.

Provisioning strategy:
    - Look the record up by the authenticated user id.
    - If missing, create it with the name taken from the email's local
      part and default entitlements.
    - If the create fails (e.g. a concurrent client created the row
      first), retry the lookup once before giving up.
"""

from __future__ import annotations

from typing import Optional

from brewnet.logger import StructuredLogger
from brewnet.models.user import IdentityRecord
from brewnet.services.base_service import BaseService
from brewnet.services.identity_backend import IdentityBackend
from brewnet.utils.audit import log_audit_event


class JITProvisioningError(Exception):
    """Raised when an identity record can neither be found nor created."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


def default_display_name(email: str) -> str:
    """Name used for an auto-provisioned record: the email's local part."""
    local_part: str = email.split("@")[0].strip()
    return local_part or "User"


class JITProvisioningService(BaseService):
    """Ensures an identity record exists for an authenticated subject."""

    def __init__(self, logger: StructuredLogger) -> None:
        super().__init__(logger)

    def ensure_identity_record(
        self,
        backend: IdentityBackend,
        user_id: str,
        email: str,
    ) -> IdentityRecord:
        """Return the identity record for *user_id*, creating it if absent.

        Args:
            backend: The identity backend that authenticated the subject.
            user_id: Authenticated subject id.
            email: Email the subject signed in with.

        Returns:
            The existing or freshly provisioned record.

        Raises:
            JITProvisioningError: If the record cannot be created and a
                retry lookup still finds nothing.
            Exception: Lookup failures propagate unchanged so that the
                caller can classify them (network, ...).
        """
        existing: Optional[IdentityRecord] = backend.get_identity_record(user_id)
        if existing is not None:
            return existing
        return self._provision(backend, user_id, email)

    def _provision(
        self,
        backend: IdentityBackend,
        user_id: str,
        email: str,
    ) -> IdentityRecord:
        name: str = default_display_name(email)
        self._logger.info(
            "JIT Provisioning: creating identity record for %s on %s backend.",
            user_id,
            backend.name,
        )

        try:
            created: IdentityRecord = backend.create_identity_record(
                IdentityRecord.new(user_id=user_id, email=email, name=name)
            )
        except Exception as exc:
            self._logger.warning(
                "JIT Provisioning: create failed for %s, retrying lookup. Error: %s",
                user_id,
                exc,
            )
            retried: Optional[IdentityRecord] = backend.get_identity_record(user_id)
            if retried is None:
                raise JITProvisioningError(
                    f"Failed to create identity record for {user_id}",
                    original_error=exc,
                ) from exc
            return retried

        log_audit_event(
            logger=self._logger,
            action="JIT_CREATE",
            entity_type="IdentityRecord",
            entity_id=user_id,
            user_id=user_id,
            details={"backend": backend.name, "name": name},
        )
        return created
