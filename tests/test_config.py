"""Tests for brewnet.config.AppConfig defaults and startup warnings."""

import logging

from brewnet.config import AppConfig
from brewnet.models.enums import IdentityMode


def test_oauth_credentials_default_to_empty():
    config = AppConfig(_env_file=None)

    assert config.OAUTH_CLIENT_ID == ""
    assert config.OAUTH_REDIRECT_URI == ""


def test_missing_oauth_credentials_are_warned(caplog):
    with caplog.at_level(logging.WARNING, logger="brewnet.config"):
        AppConfig(_env_file=None, IDENTITY_MODE=IdentityMode.LOCAL)

    assert "OAUTH_CLIENT_ID or OAUTH_REDIRECT_URI is empty" in caplog.text


def test_configured_oauth_credentials_are_used(caplog):
    with caplog.at_level(logging.WARNING, logger="brewnet.config"):
        config = AppConfig(
            _env_file=None,
            IDENTITY_MODE=IdentityMode.LOCAL,
            OAUTH_CLIENT_ID="client-1",
            OAUTH_REDIRECT_URI="https://example.supabase.co/functions/v1/linkedin-callback",
        )

    assert config.OAUTH_CLIENT_ID == "client-1"
    assert "OAUTH_CLIENT_ID" not in caplog.text
