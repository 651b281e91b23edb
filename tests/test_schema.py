"""Tests for brewnet.schema - idempotent local schema setup."""

import sqlite3

import pytest

from brewnet.schema import CURRENT_SCHEMA_VERSION, initialize_schema


def _tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def _version(conn):
    return conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()[0]


class TestInitializeSchema:

    def test_fresh_database_gets_every_table(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "fresh.db")
        initialize_schema(conn, logger)

        assert {"schema_version", "audit_log", "local_users", "session_store"} <= _tables(conn)
        assert _version(conn) == CURRENT_SCHEMA_VERSION
        conn.close()

    def test_running_twice_is_a_no_op(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "twice.db")
        initialize_schema(conn, logger)
        initialize_schema(conn, logger)

        assert _version(conn) == CURRENT_SCHEMA_VERSION
        conn.close()

    def test_fresh_local_users_carries_entitlement_columns(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "columns.db")
        initialize_schema(conn, logger)

        columns = {row[1] for row in conn.execute("PRAGMA table_info(local_users)")}
        assert {"is_pro", "pro_start", "pro_end", "likes_remaining"} <= columns
        conn.close()

    def test_local_users_requires_created_at(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "created.db")
        initialize_schema(conn, logger)

        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO local_users (id, email, name) VALUES (?, ?, ?)",
                ("u1", "a@example.com", "Name"),
            )
        conn.close()


class TestLocalUsersConstraints:

    def _insert(self, conn, user_id, email, is_guest):
        conn.execute(
            "INSERT INTO local_users (id, email, name, is_guest, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, email, "Name", is_guest, "2026-01-01T00:00:00+00:00"),
        )

    def test_guests_may_share_an_email(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "guests.db")
        initialize_schema(conn, logger)

        self._insert(conn, "guest_1", "guest@brewnet.com", 1)
        self._insert(conn, "guest_2", "guest@brewnet.com", 1)
        count = conn.execute("SELECT COUNT(*) FROM local_users").fetchone()[0]
        assert count == 2
        conn.close()

    def test_registered_emails_are_unique(self, tmp_path, logger):
        conn = sqlite3.connect(tmp_path / "unique.db")
        initialize_schema(conn, logger)

        self._insert(conn, "u1", "a@example.com", 0)
        with pytest.raises(sqlite3.IntegrityError):
            self._insert(conn, "u2", "a@example.com", 0)
        conn.close()
