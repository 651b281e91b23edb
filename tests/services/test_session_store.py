"""Tests for brewnet.services.session_store - encrypted session slots."""

import stat

import pytest

from brewnet.models.user import Session
from brewnet.services.session_store import CURRENT_USER_KEY, SessionStore


@pytest.fixture
def store(db, logger, config, tmp_path):
    return SessionStore(
        db=db,
        logger=logger,
        salt_path=tmp_path / "salt",
        kdf_iterations=config.SESSION_KDF_ITERATIONS,
    )


@pytest.fixture
def session():
    return Session(email="ada@example.com", name="Ada", likes_remaining=4)


class TestCurrentSlot:

    def test_load_without_save_returns_none(self, store):
        assert store.load() is None

    def test_save_then_load_returns_equal_session(self, store, session):
        store.save(session)
        assert store.load() == session

    def test_payload_is_not_stored_in_plaintext(self, store, session, db):
        store.save(session)
        row = db.sqlite.execute(
            "SELECT encrypted_payload FROM session_store WHERE key = ?",
            (CURRENT_USER_KEY,),
        ).fetchone()
        assert b"ada@example.com" not in bytes(row["encrypted_payload"])

    def test_save_overwrites_previous_session(self, store, session):
        store.save(session)
        replacement = session.model_copy(update={"name": "Ada L."})
        store.save(replacement)
        assert store.load().name == "Ada L."

    def test_tampered_payload_loads_as_none(self, store, session, db):
        store.save(session)
        db.sqlite.execute(
            "UPDATE session_store SET tag = ? WHERE key = ?",
            (b"\x00" * 16, CURRENT_USER_KEY),
        )
        db.sqlite.commit()
        assert store.load() is None

    def test_different_salt_cannot_read_slot(self, store, session, db, logger, config, tmp_path):
        store.save(session)
        other = SessionStore(
            db=db,
            logger=logger,
            salt_path=tmp_path / "other_salt",
            kdf_iterations=config.SESSION_KDF_ITERATIONS,
        )
        assert other.load() is None


class TestPlatformSlots:

    def test_platform_slot_is_keyed_by_subject(self, store, session):
        store.save_platform_session("001.abc", session)
        assert store.load_platform_session("001.abc") == session
        assert store.load_platform_session("002.def") is None

    def test_clear_removes_current_and_platform_slots(self, store, session, db):
        store.save(session)
        store.save_platform_session("001.abc", session)
        store.save_platform_session("002.def", session)

        store.clear()

        assert store.load() is None
        assert store.load_platform_session("001.abc") is None
        count = db.sqlite.execute("SELECT COUNT(*) FROM session_store").fetchone()[0]
        assert count == 0

    def test_clear_keeps_unrelated_keys(self, store, db):
        """Underscore in the prefix is matched literally, not as a wildcard."""
        db.sqlite.execute(
            "INSERT INTO session_store (key, encrypted_payload, nonce, tag) "
            "VALUES ('appleXuser_1', x'00', x'00', x'00')"
        )
        db.sqlite.commit()

        store.clear()

        remaining = db.sqlite.execute("SELECT key FROM session_store").fetchall()
        assert [row["key"] for row in remaining] == ["appleXuser_1"]


class TestSaltFile:

    def test_salt_created_with_owner_only_permissions(self, store, session, tmp_path):
        store.save(session)
        salt_path = tmp_path / "salt"
        assert salt_path.exists()
        assert len(salt_path.read_bytes()) == 32
        assert stat.S_IMODE(salt_path.stat().st_mode) == 0o600
