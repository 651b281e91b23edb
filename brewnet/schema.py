"""
Centralized SQLite Schema Initialization.

Defines the canonical schema for the BrewNet local database and provides a
single entry-point -- :func:`initialize_schema` -- that creates all
required tables idempotently.  A lightweight ``schema_version`` table
records which version a database was created at.

A fresh database (version 0) gets every table from
:data:`_TABLE_DEFINITIONS` in one transaction together with the version
row.  On failure the database rolls back to version 0 and the next
startup retries.

Tables:
    - ``audit_log``: queryable persistence for ``log_audit_event``.
    - ``local_users``: identity records served by ``LocalIdentityBackend``.
    - ``session_store``: encrypted key/value slots used by ``SessionStore``
      (``current_user`` and the ``apple_user_<subject>`` family).

Usage::

    import sqlite3
    from brewnet.logger import StructuredLogger
    from brewnet.schema import initialize_schema

    conn = sqlite3.connect("brewnet_local.db")
    logger = StructuredLogger(name="schema")
    initialize_schema(conn, logger)
"""

from __future__ import annotations

import sqlite3

from brewnet.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

# ---------------------------------------------------------------------------
# Schema version.
# ---------------------------------------------------------------------------
CURRENT_SCHEMA_VERSION: int = 1

# ---------------------------------------------------------------------------
# DDL statements for every table in the local database.
# ---------------------------------------------------------------------------
_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- persistent structured audit trail ------------------------------------
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        details TEXT DEFAULT '{}',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- local identity records (LocalIdentityBackend) ------------------------
    """
    CREATE TABLE IF NOT EXISTS local_users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        phone_number TEXT,
        is_guest INTEGER NOT NULL DEFAULT 0,
        profile_setup_completed INTEGER NOT NULL DEFAULT 0,
        password_hash TEXT,
        password_salt TEXT,
        is_pro INTEGER NOT NULL DEFAULT 0,
        pro_start TEXT,
        pro_end TEXT,
        likes_remaining INTEGER NOT NULL DEFAULT 10,
        created_at TEXT NOT NULL,
        last_login_at TEXT,
        updated_at TEXT
    )
    """,
    # -- encrypted session slots (SessionStore) -------------------------------
    """
    CREATE TABLE IF NOT EXISTS session_store (
        key TEXT PRIMARY KEY,
        encrypted_payload BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Guests share one placeholder address, so uniqueness covers real accounts only.
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_local_users_email ON local_users(email) WHERE is_guest = 0",
    "CREATE INDEX IF NOT EXISTS idx_local_users_phone ON local_users(phone_number)",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_entity ON audit_log(entity_type, entity_id)",
]


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_version`` table if it does not yet exist.

    This is executed *before* any version check so that a brand-new
    database can be bootstrapped cleanly.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the current schema version, or ``0`` if unset."""
    cursor: sqlite3.Cursor = conn.execute(
        "SELECT version FROM schema_version WHERE id = 1"
    )
    row: tuple[int] | None = cursor.fetchone()
    return row[0] if row is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Upsert the single-row version tracker to *version*.

    Does **not** commit; the caller is responsible for transaction
    management so that version updates are atomic with schema changes.
    """
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def _create_all_tables(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Execute every DDL statement in :data:`_TABLE_DEFINITIONS`.

    Does **not** commit.
    """
    for ddl in _TABLE_DEFINITIONS:
        conn.execute(ddl)
    logger.info(
        f"All {len(_TABLE_DEFINITIONS)} schema objects created or verified successfully."
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Ensure the local SQLite database matches the current schema version.

    Workflow:
        1. Guarantee the ``schema_version`` table exists (separate commit).
        2. Read the stored version number (``0`` for a fresh database).
        3. If the stored version equals or exceeds
           :data:`CURRENT_SCHEMA_VERSION`, return immediately.
        4. Otherwise create all tables, set the version and commit as one
           transaction.  On failure everything is rolled back and the
           next startup retries.

    Called on every startup; fully idempotent.

    Args:
        conn: An open SQLite connection.
        logger: A :class:`~brewnet.logger.StructuredLogger` instance.
    """
    _ensure_version_table(conn)
    current: int = _get_schema_version(conn)

    if current >= CURRENT_SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current}).")
        return

    logger.info(
        f"Creating schema at version {CURRENT_SCHEMA_VERSION} …"
    )

    try:
        _create_all_tables(conn, logger)
        _set_schema_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            f"Schema creation failed; rolled back to version {current}."
        )
        raise

    logger.info(f"Schema initialised at version {CURRENT_SCHEMA_VERSION}.")
