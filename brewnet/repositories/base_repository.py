"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference (Supabase + SQLite)
- Logger reference
- Convenience properties for accessing clients
- Batch-aware commit helper
"""

from __future__ import annotations

import sqlite3

from supabase import Client as SupabaseClient

from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client.

        Raises ``RuntimeError`` in offline mode; identity callers classify
        it as a network failure.
        """
        return self._db.supabase

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Returns the SQLite connection for local operations."""
        return self._db.sqlite

    def _commit(self) -> None:
        """Commit the SQLite transaction unless a batch is active.

        When :meth:`DatabaseManager.batch_write` is active, this is a
        no-op: the batch context manager issues a single commit (or
        rollback) when the ``with`` block exits.
        """
        if not self._db.in_batch:
            self.sqlite.commit()
