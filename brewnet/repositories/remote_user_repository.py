"""
Remote User Repository.

Supabase (PostgREST) data access for the remote-canonical identity tables:

- ``users``: one :class:`~brewnet.models.user.IdentityRecord` per account.
- ``profiles``: extended profiles; only existence is consulted here.
- ``linkedin_profiles`` / ``linkedin_import_audit``: imported provider
  profiles awaiting confirmation, and their action log.

Unlike the local repository there is no SQLite fallback: errors propagate
so that the caller can classify them (network, duplicate, ...).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.enums import ImportStatus
from brewnet.models.user import IdentityRecord
from brewnet.repositories.base_repository import BaseRepository


class RemoteUserRepository(BaseRepository):
    """Data access layer for the backend ``users`` table and its satellites."""

    TABLE = "users"
    PROFILES_TABLE = "profiles"
    IMPORTS_TABLE = "linkedin_profiles"
    IMPORT_AUDIT_TABLE = "linkedin_import_audit"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Optional[IdentityRecord]:
        response = (
            self.supabase.table(self.TABLE)
            .select("*")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        # postgrest-py returns None instead of an empty response for
        # ``maybe_single`` on some versions.
        if response is None or not response.data:
            return None
        return IdentityRecord(**response.data)

    def insert(self, record: IdentityRecord) -> IdentityRecord:
        response = (
            self.supabase.table(self.TABLE)
            .insert(record.model_dump(mode="json", exclude_none=True))
            .execute()
        )
        rows: list[dict[str, Any]] = response.data or []
        return IdentityRecord(**rows[0]) if rows else record

    def update(self, user_id: str, fields: dict[str, Any]) -> Optional[IdentityRecord]:
        payload: dict[str, Any] = {
            **fields,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        response = (
            self.supabase.table(self.TABLE)
            .update(payload)
            .eq("id", user_id)
            .execute()
        )
        rows: list[dict[str, Any]] = response.data or []
        return IdentityRecord(**rows[0]) if rows else None

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------

    def get_extended_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        response = (
            self.supabase.table(self.PROFILES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        rows: list[dict[str, Any]] = response.data or []
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # profile imports
    # ------------------------------------------------------------------

    def update_import_status(self, import_id: str, status: ImportStatus) -> None:
        (
            self.supabase.table(self.IMPORTS_TABLE)
            .update({
                "status": str(status),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("id", import_id)
            .execute()
        )

    def insert_import_action(
        self, import_id: str, action: str, detail: dict[str, Any],
    ) -> None:
        (
            self.supabase.table(self.IMPORT_AUDIT_TABLE)
            .insert({
                "import_id": import_id,
                "action": action,
                "detail": detail,
            })
            .execute()
        )
