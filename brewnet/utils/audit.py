"""
Structured Audit Logging Utility.

Every change to the authenticated identity (login, logout, registration,
guest upgrade, profile-import confirmation) is logged as a structured JSON
object.  Provides a Pydantic-validated model and a single function for
consistent audit trail entries.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from brewnet.logger import StructuredLogger

__all__ = ["AuditEvent", "log_audit_event", "persist_audit_event"]

# Scalar type permitted inside the ``details`` mapping.  Nested structures
# are not accepted.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry.

    Every audit event is validated against this model before it is
    serialised to JSON and handed to the logger, so malformed payloads
    are caught at the point of origin.
    """

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def _build_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]],
) -> AuditEvent:
    return AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
    conn: Optional[sqlite3.Connection] = None,
    lock: Optional[threading.RLock] = None,
) -> None:
    """Log a structured JSON audit event, with optional SQLite persistence.

    Always emits a structured JSON log line via *logger*.  When *conn* is
    provided, also writes the event to the ``audit_log`` SQLite table
    (dual logging).  Persistence failures are logged and never propagate
    into the calling operation.

    Args:
        logger: The logger instance to write to.
        action: What happened (e.g. ``"LOGIN"``, ``"LOGOUT"``,
            ``"REGISTER"``, ``"IMPORT_CONFIRMED"``).
        entity_type: Type of entity affected (e.g. ``"Session"``,
            ``"ProfileImport"``).
        entity_id: Primary key of the affected entity.
        user_id: ID of the user who performed the action.
        details: Optional additional context.  Never include credential
            material here.
        conn: Optional SQLite connection for persistence.
        lock: The database write lock to hold while persisting.
    """
    event = _build_event(action, entity_type, entity_id, user_id, details)
    logger.info(
        "AUDIT: %s",
        json.dumps(event.model_dump(), default=str),
        extra={"event": action},
    )

    if conn is None:
        return

    try:
        if lock is not None:
            with lock:
                persist_audit_event(conn, action, entity_type, entity_id, user_id, details)
        else:
            persist_audit_event(conn, action, entity_type, entity_id, user_id, details)
    except Exception as db_err:
        logger.warning("Failed to persist audit event to SQLite: %s", db_err)


def persist_audit_event(
    conn: sqlite3.Connection,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> None:
    """Write an audit event to the SQLite ``audit_log`` table.

    The event is Pydantic-validated before insertion; a
    :class:`pydantic.ValidationError` propagates to the caller so that
    malformed audit data is never silently persisted.

    Args:
        conn: An open SQLite connection with write access.
        action: What happened.
        entity_type: Type of entity affected.
        entity_id: Primary key of the affected entity.
        user_id: ID of the user who performed the action.
        details: Optional additional context.
    """
    event = _build_event(action, entity_type, entity_id, user_id, details)

    conn.execute(
        """
        INSERT INTO audit_log (timestamp, action, entity_type, entity_id, user_id, details)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            event.timestamp,
            event.action,
            event.entity_type,
            event.entity_id,
            event.user_id,
            json.dumps(event.details, default=str),
        ),
    )
    conn.commit()
