"""
Encrypted Session Store.

Persists the current ``Session`` (and the per-subject platform Sign-In
cache) in the SQLite ``session_store`` table, encrypted with AES-256-GCM.

Security model
--------------
- The encryption key is derived from machine characteristics (hostname +
  OS username) via PBKDF2-HMAC-SHA256 with a per-installation random salt
  stored at ``SESSION_SALT_PATH``.  The key is never persisted; it is
  derived once per ``SessionStore`` instance and kept in memory.
- AES-GCM provides confidentiality and integrity: a tampered or foreign
  slot fails verification and is treated as absent.
- Logout deletes the ``current_user`` slot and every ``apple_user_*``
  slot.

Storage layout (one row per slot)::

    session_store
    ├── key               TEXT PRIMARY KEY  ("current_user", "apple_user_<subject>")
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    ├── tag               BLOB
    └── updated_at        TIMESTAMP
"""

from __future__ import annotations

import getpass
import os
import socket
import stat
import threading
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import ValidationError

from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.user import Session

CURRENT_USER_KEY: str = "current_user"
PLATFORM_KEY_PREFIX: str = "apple_user_"


class SessionStore:
    """Encrypted key/value persistence for ``Session`` values.

    This service accesses SQLite directly rather than through a
    repository: the slots are infrastructure state (cached credentials),
    not domain data.

    Parameters
    ----------
    db:
        Database manager providing the SQLite connection and write lock.
    logger:
        Structured logger.
    salt_path:
        Location of the per-installation 32-byte salt file.
    kdf_iterations:
        PBKDF2 iteration count for key derivation.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path | str,
        kdf_iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = Path(salt_path)
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Current user slot
    # ------------------------------------------------------------------

    def save(self, session: Session) -> None:
        """Encrypt *session* into the ``current_user`` slot.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        sqlite3.Error
            If the write fails.
        """
        self._write(CURRENT_USER_KEY, session)

    def load(self) -> Optional[Session]:
        """Return the stored current session, or ``None``.

        Missing, corrupt, or undecryptable slots all yield ``None``.
        """
        return self._read(CURRENT_USER_KEY)

    def clear(self) -> None:
        """Delete the ``current_user`` slot and all platform slots."""
        with self._db.write_lock:
            self._db.sqlite.execute(
                "DELETE FROM session_store WHERE key = ? OR key LIKE ? ESCAPE '\\'",
                (CURRENT_USER_KEY, _like_prefix(PLATFORM_KEY_PREFIX)),
            )
            self._db.sqlite.commit()
        self._logger.info("Session store cleared.", extra={"event": "SESSION_CLEARED"})

    # ------------------------------------------------------------------
    # Platform Sign-In slots
    # ------------------------------------------------------------------

    def save_platform_session(self, subject: str, session: Session) -> None:
        self._write(f"{PLATFORM_KEY_PREFIX}{subject}", session)

    def load_platform_session(self, subject: str) -> Optional[Session]:
        return self._read(f"{PLATFORM_KEY_PREFIX}{subject}")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _write(self, key: str, session: Session) -> None:
        plaintext: bytes = session.model_dump_json().encode("utf-8")
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)

        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                INSERT INTO session_store (key, encrypted_payload, nonce, tag)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    encrypted_payload = excluded.encrypted_payload,
                    nonce             = excluded.nonce,
                    tag               = excluded.tag,
                    updated_at        = CURRENT_TIMESTAMP
                """,
                (key, ciphertext, cipher.nonce, tag),
            )
            self._db.sqlite.commit()
        self._logger.debug("Session slot '%s' written.", key)

    def _read(self, key: str) -> Optional[Session]:
        row = self._db.sqlite.execute(
            "SELECT encrypted_payload, nonce, tag FROM session_store WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None

        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
            plaintext: bytes = cipher.decrypt_and_verify(
                row["encrypted_payload"], row["tag"],
            )
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Session slot '%s' failed decryption (corrupted data or "
                "machine identity changed): %s",
                key,
                exc,
            )
            return None

        try:
            return Session.model_validate_json(plaintext)
        except ValidationError as exc:
            self._logger.warning("Session slot '%s' is malformed: %s", key, exc)
            return None

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._kdf_iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _get_or_create_salt(self) -> bytes:
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )

        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        try:
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        except OSError as exc:
            self._logger.warning(
                "Could not restrict permissions on '%s': %s", self._salt_path, exc,
            )
        self._logger.info("Session salt created at %s.", self._salt_path)
        return salt


def _like_prefix(prefix: str) -> str:
    """SQL ``LIKE`` pattern matching keys that start with *prefix* literally."""
    escaped: str = (
        prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"{escaped}%"
