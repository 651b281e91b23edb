"""
Local User Repository.

SQLite data access for identity records served without the remote backend:
guest users, offline-mode accounts, and the local identity backend.
Password material is stored as PBKDF2 hashes and never leaves this layer
except through :meth:`LocalUserRepository.get_credentials`.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import NamedTuple, Optional, Union

from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.user import IdentityRecord
from brewnet.repositories.base_repository import BaseRepository

ColumnValue = Union[str, int, bool, None]

# Columns that ``update`` may change.  ``id`` and credentials are excluded.
_UPDATABLE_COLUMNS: frozenset[str] = frozenset({
    "email",
    "name",
    "phone_number",
    "profile_setup_completed",
    "is_pro",
    "pro_start",
    "pro_end",
    "likes_remaining",
    "last_login_at",
})


class StoredCredentials(NamedTuple):
    """Password material for one local account."""

    user_id: str
    password_hash: Optional[str]
    password_salt: Optional[str]


class LocalUserRepository(BaseRepository):
    """Data access layer for the ``local_users`` table.

    Writes hold ``DatabaseManager.write_lock``.  Duplicate non-guest
    emails surface as ``sqlite3.IntegrityError`` from :meth:`insert`.
    """

    TABLE = "local_users"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Optional[IdentityRecord]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE id = ?", (user_id,)
        ).fetchone()
        return IdentityRecord(**dict(row)) if row else None

    def get_by_email(self, email: str) -> Optional[IdentityRecord]:
        """Fetch a registered (non-guest) user by case-insensitive email."""
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE email = ? AND is_guest = 0",
            (email.strip().lower(),),
        ).fetchone()
        return IdentityRecord(**dict(row)) if row else None

    def get_by_phone(self, phone_number: str) -> Optional[IdentityRecord]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE phone_number = ? AND is_guest = 0",
            (phone_number,),
        ).fetchone()
        return IdentityRecord(**dict(row)) if row else None

    def get_credentials(self, email: str) -> Optional[StoredCredentials]:
        """Return the stored password hash and salt for *email*."""
        row = self.sqlite.execute(
            f"SELECT id, password_hash, password_salt FROM {self.TABLE} "
            "WHERE email = ? AND is_guest = 0",
            (email.strip().lower(),),
        ).fetchone()
        if row is None:
            return None
        return StoredCredentials(row["id"], row["password_hash"], row["password_salt"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(
        self,
        record: IdentityRecord,
        password_hash: Optional[str] = None,
        password_salt: Optional[str] = None,
    ) -> IdentityRecord:
        """Insert *record*; non-guest emails are stored lower-cased.

        Raises
        ------
        sqlite3.IntegrityError
            If a non-guest user with the same email already exists.
        """
        email: str = record.email if record.is_guest else record.email.strip().lower()
        now: str = datetime.now(timezone.utc).isoformat()
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE} (
                    id, email, name, phone_number, is_guest,
                    profile_setup_completed, password_hash, password_salt,
                    is_pro, pro_start, pro_end, likes_remaining,
                    created_at, last_login_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    email,
                    record.name,
                    record.phone_number,
                    int(record.is_guest),
                    int(record.profile_setup_completed),
                    password_hash,
                    password_salt,
                    int(record.is_pro),
                    record.pro_start,
                    record.pro_end,
                    record.likes_remaining,
                    record.created_at or now,
                    record.last_login_at or now,
                    record.updated_at or now,
                ),
            )
            self._commit()
        self._logger.info("Local user %s inserted.", record.id)
        return record.model_copy(update={"email": email})

    def update(
        self, user_id: str, fields: dict[str, ColumnValue],
    ) -> Optional[IdentityRecord]:
        """Apply *fields* to the user row and return the updated record.

        Raises
        ------
        ValueError
            If *fields* names a column that may not be updated.
        """
        unknown: set[str] = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return self.get_by_id(user_id)

        values: dict[str, ColumnValue] = {
            key: int(value) if isinstance(value, bool) else value
            for key, value in fields.items()
        }
        values["updated_at"] = datetime.now(timezone.utc).isoformat()
        assignments: str = ", ".join(f"{column} = ?" for column in values)

        with self._db.write_lock:
            self.sqlite.execute(
                f"UPDATE {self.TABLE} SET {assignments} WHERE id = ?",
                (*values.values(), user_id),
            )
            self._commit()
        return self.get_by_id(user_id)

    def touch_last_login(self, user_id: str) -> None:
        try:
            self.update(
                user_id, {"last_login_at": datetime.now(timezone.utc).isoformat()},
            )
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to update last login for %s: %s", user_id, exc,
            )
