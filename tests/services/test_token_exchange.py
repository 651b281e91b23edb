"""Tests for brewnet.services.token_exchange using mocked HTTP."""

import pytest
import requests
import responses

from brewnet.models.auth_models import AuthErrorCode
from brewnet.services.token_exchange import (
    TokenExchangeClient,
    backend_error_message,
    normalize_picture_url,
)

PROFILE_URL = "https://api.provider.test/v2/me"
EMAIL_URL = "https://api.provider.test/v2/emailAddress"


@pytest.fixture
def exchange_config(config):
    return config.model_copy(update={
        "OAUTH_PROFILE_ENDPOINT": PROFILE_URL,
        "OAUTH_EMAIL_ENDPOINT": EMAIL_URL,
    })


@pytest.fixture
def client(exchange_config, logger):
    return TokenExchangeClient(exchange_config, logger)


def _picture(*urls):
    return {
        "displayImage~": {
            "elements": [{"identifiers": [{"identifier": url}]} for url in urls],
        },
    }


class TestExchangeCode:

    @responses.activate
    def test_profile_returned_by_backend(self, client, exchange_config):
        responses.add(
            responses.POST,
            exchange_config.token_exchange_url,
            json={"profile": {"id": "abc", "localizedFirstName": "Ada"}},
            status=200,
        )

        result = client.exchange_code("auth-code")

        assert result.success is True
        assert result.profile["localizedFirstName"] == "Ada"
        assert len(responses.calls) == 1
        assert b'"code": "auth-code"' in responses.calls[0].request.body

    @responses.activate
    def test_access_token_fetches_profile_then_email(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url,
            json={"access_token": "tok-1"}, status=200,
        )
        responses.add(
            responses.GET, PROFILE_URL,
            json={"id": "abc", "localizedFirstName": "Ada"}, status=200,
        )
        responses.add(
            responses.GET, EMAIL_URL,
            json={"elements": [{"handle~": {"emailAddress": "ada@example.com"}}]},
            status=200,
        )

        result = client.exchange_code("auth-code")

        assert result.success is True
        assert result.profile["email"] == "ada@example.com"
        assert result.profile["id"] == "abc"
        assert [call.request.method for call in responses.calls] == ["POST", "GET", "GET"]
        assert responses.calls[1].request.headers["Authorization"] == "Bearer tok-1"
        assert responses.calls[2].request.headers["Authorization"] == "Bearer tok-1"

    @responses.activate
    def test_email_failure_discards_partial_profile(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url,
            json={"access_token": "tok-1"}, status=200,
        )
        responses.add(responses.GET, PROFILE_URL, json={"id": "abc"}, status=200)
        responses.add(responses.GET, EMAIL_URL, json={"message": "denied"}, status=403)

        result = client.exchange_code("auth-code")

        assert result.success is False
        assert result.profile is None
        assert result.error_code == AuthErrorCode.EXCHANGE_FAILED
        assert result.error_message == "Provider email request returned status 403"

    @responses.activate
    def test_backend_error_message_is_composed(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url,
            json={"error": "invalid_grant", "detail": "code expired", "hint": "retry"},
            status=400,
        )

        result = client.exchange_code("auth-code")

        assert result.success is False
        assert result.error_message == "invalid_grant: code expired\n\nretry"

    @responses.activate
    def test_transport_error(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url,
            body=requests.ConnectionError("connection refused"),
        )

        result = client.exchange_code("auth-code")

        assert result.success is False
        assert result.error_message.startswith("Backend exchange failed:")

    @responses.activate
    def test_empty_body(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url, body=b"", status=200,
        )
        assert client.exchange_code("c").error_message == "No data received from backend"

    @responses.activate
    def test_malformed_body(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url, body="{not json", status=200,
        )
        assert client.exchange_code("c").error_message == "Failed to parse backend response"

    @responses.activate
    def test_unexpected_shape(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.token_exchange_url,
            json={"something": "else"}, status=200,
        )
        result = client.exchange_code("c")
        assert result.error_message == "Unexpected response format from backend"


class TestImportProfile:

    @responses.activate
    def test_success_returns_import_id(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.profile_import_url,
            json={"success": True, "profile": {"name": "Ada"}, "import_id": 42},
            status=200,
        )

        result = client.import_profile("auth-code", "user-1")

        assert result.success is True
        assert result.import_id == "42"
        assert result.profile == {"name": "Ada"}
        assert b'"user_id": "user-1"' in responses.calls[0].request.body

    @responses.activate
    def test_backend_error(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.profile_import_url,
            json={"error": "Import failed", "detail": "token revoked"}, status=500,
        )
        result = client.import_profile("auth-code", "user-1")
        assert result.success is False
        assert result.error_message == "Import failed: token revoked"

    @responses.activate
    def test_non_json_error(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.profile_import_url, body="oops", status=502,
        )
        assert client.import_profile("c", "u").error_message == "Backend error: 502"

    @responses.activate
    def test_success_flag_required(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.profile_import_url,
            json={"success": False, "profile": {}}, status=200,
        )
        assert client.import_profile("c", "u").error_message == "Invalid response format"

    @responses.activate
    def test_network_error(self, client, exchange_config):
        responses.add(
            responses.POST, exchange_config.profile_import_url,
            body=requests.Timeout("read timed out"),
        )
        result = client.import_profile("c", "u")
        assert result.success is False
        assert result.error_message.startswith("Network error:")


class TestHelpers:

    def test_largest_picture_is_selected(self):
        profile = {"id": "abc", "profilePicture": _picture("small.jpg", "large.jpg")}
        assert normalize_picture_url(profile)["pictureUrl"] == "large.jpg"

    def test_profile_without_picture_is_unchanged(self):
        profile = {"id": "abc"}
        assert normalize_picture_url(profile) == {"id": "abc"}

    def test_empty_elements_are_tolerated(self):
        profile = {"profilePicture": _picture()}
        assert "pictureUrl" not in normalize_picture_url(profile)

    @pytest.mark.parametrize("payload, expected", [
        ({"error": "bad"}, "bad"),
        ({"error": "bad", "detail": "worse"}, "bad: worse"),
        ({"detail": "only detail"}, "only detail"),
        ({}, "Backend returned status 418"),
        (None, "Backend returned status 418"),
    ])
    def test_backend_error_message(self, payload, expected):
        assert backend_error_message(payload, 418) == expected
