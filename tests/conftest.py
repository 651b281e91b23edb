"""Shared test fixtures for the BrewNet auth test suite."""

import io
import logging
import uuid

import pytest

from brewnet.auth import SessionManager
from brewnet.config import AppConfig
from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.enums import IdentityMode
from brewnet.schema import initialize_schema


# Iteration counts low enough to keep PBKDF2 fast in tests.
TEST_KDF_ITERATIONS = 1_000


@pytest.fixture
def logger():
    """Console-only logger writing to an in-memory stream.

    Each test gets a fresh logger name because handlers are only attached
    the first time a name is seen.
    """
    return StructuredLogger(
        name=f"brewnet-test-{uuid.uuid4().hex[:8]}",
        level=logging.DEBUG,
        stream=io.StringIO(),
        file_logging=False,
    )


@pytest.fixture
def config(tmp_path):
    """Configuration isolated from any developer ``.env`` file."""
    return AppConfig(
        _env_file=None,
        SUPABASE_URL="https://example.supabase.co",
        OAUTH_CLIENT_ID="test-client-id",
        OAUTH_REDIRECT_URI="https://example.supabase.co/functions/v1/linkedin-callback",
        IDENTITY_MODE=IdentityMode.LOCAL,
        LOCAL_DB_PATH=str(tmp_path / "brewnet_test.db"),
        SESSION_SALT_PATH=str(tmp_path / "session_salt"),
        SESSION_KDF_ITERATIONS=TEST_KDF_ITERATIONS,
        LOCAL_PASSWORD_KDF_ITERATIONS=TEST_KDF_ITERATIONS,
        LOG_FILE=str(tmp_path / "brewnet_test.log"),
    )


@pytest.fixture
def db(tmp_path, logger):
    """Offline DatabaseManager over a schema-initialised SQLite file."""
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=tmp_path / "brewnet_test.db",
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def session_manager(logger):
    return SessionManager(logger)
