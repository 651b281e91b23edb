"""Tests for OAuthHandshakeController and SystemBrowserLauncher."""

from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from brewnet.models.auth_models import AuthErrorCode
from brewnet.models.enums import HandshakeStatus
from brewnet.models.oauth_models import ExchangeResult
from brewnet.services.oauth_handshake import OAuthHandshakeController
from brewnet.services.token_exchange import TokenExchangeClient
from brewnet.services.user_agent import SystemBrowserLauncher, UserAgentOutcome


class FakeLauncher:
    """Records launches instead of opening a browser."""

    def __init__(self, accept=True):
        self.accept = accept
        self.launches = []

    def launch(self, url, callback_scheme, on_finish):
        self.launches.append((url, callback_scheme, on_finish))
        return self.accept

    @property
    def last_state(self):
        url = self.launches[-1][0]
        return parse_qs(urlparse(url).query)["state"][0]

    def finish(self, outcome):
        self.launches[-1][2](outcome)


@pytest.fixture
def exchange():
    client = MagicMock(spec=TokenExchangeClient)
    client.exchange_code.return_value = ExchangeResult.ok({"id": "abc", "email": "a@b.co"})
    return client


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def controller(config, exchange, launcher, logger):
    return OAuthHandshakeController(config, exchange, launcher, logger)


class TestAuthorizationUrl:

    def test_url_carries_all_parameters(self, controller, config):
        url = controller.build_authorization_url("state-123")
        query = parse_qs(urlparse(url).query)

        assert url.startswith(config.OAUTH_AUTHORIZATION_ENDPOINT + "?")
        assert query["response_type"] == ["code"]
        assert query["client_id"] == [config.OAUTH_CLIENT_ID]
        assert query["redirect_uri"] == [config.OAUTH_REDIRECT_URI]
        assert query["state"] == ["state-123"]
        assert query["scope"] == [config.OAUTH_SCOPE]

    def test_relative_endpoint_yields_none(self, config, exchange, launcher, logger):
        bad = config.model_copy(update={"OAUTH_AUTHORIZATION_ENDPOINT": "not a url"})
        controller = OAuthHandshakeController(bad, exchange, launcher, logger)
        assert controller.build_authorization_url("s") is None


class TestBegin:

    def test_begin_launches_agent_with_app_scheme(self, controller, launcher, config):
        controller.begin(lambda result: None)

        assert len(launcher.launches) == 1
        assert launcher.launches[0][1] == config.OAUTH_APP_SCHEME
        assert controller.status == HandshakeStatus.AWAITING_CALLBACK
        assert controller.is_authenticating is True

    def test_each_begin_mints_a_new_state(self, controller, launcher):
        controller.begin(lambda result: None)
        first = launcher.last_state
        controller.begin(lambda result: None)
        assert launcher.last_state != first

    def test_url_failure_reports_without_launching(self, config, exchange, launcher, logger):
        bad = config.model_copy(update={"OAUTH_AUTHORIZATION_ENDPOINT": "not a url"})
        controller = OAuthHandshakeController(bad, exchange, launcher, logger)
        results = []

        controller.begin(results.append)

        assert launcher.launches == []
        assert results[0].error_code == AuthErrorCode.URL_CONSTRUCTION_FAILED
        assert controller.status == HandshakeStatus.FAILED

    def test_url_failure_keeps_pending_attempt(self, controller, launcher, exchange, monkeypatch):
        delivered = []
        controller.begin(delivered.append)
        pending_state = launcher.last_state

        monkeypatch.setattr(controller, "build_authorization_url", lambda state: None)
        failures = []
        controller.begin(failures.append)

        assert failures[0].error_code == AuthErrorCode.URL_CONSTRUCTION_FAILED
        assert controller.status == HandshakeStatus.AWAITING_CALLBACK
        assert controller.is_authenticating is True

        controller.handle_callback(f"brewnet://callback?code=abc&state={pending_state}")
        exchange.exchange_code.assert_called_once()
        assert delivered[0].success is True

    def test_launch_refused_fails_attempt(self, config, exchange, logger):
        controller = OAuthHandshakeController(config, exchange, FakeLauncher(accept=False), logger)
        results = []

        controller.begin(results.append)

        assert results[0].error_code == AuthErrorCode.EXCHANGE_FAILED
        assert controller.is_authenticating is False


class TestCallback:

    def test_matching_state_exchanges_code(self, controller, launcher, exchange):
        results = []
        controller.begin(results.append)

        result = controller.handle_callback(
            f"brewnet://callback?code=the-code&state={launcher.last_state}"
        )

        exchange.exchange_code.assert_called_once_with("the-code")
        assert result.success is True
        assert results == [result]
        assert controller.status == HandshakeStatus.COMPLETED
        assert controller.is_authenticating is False

    def test_superseded_state_is_rejected_without_exchange(self, controller, launcher, exchange):
        first_results, second_results = [], []
        controller.begin(first_results.append)
        stale_state = launcher.last_state
        controller.begin(second_results.append)

        result = controller.handle_callback(
            f"brewnet://callback?code=the-code&state={stale_state}"
        )

        exchange.exchange_code.assert_not_called()
        assert result.error_code == AuthErrorCode.CSRF_MISMATCH
        assert controller.status == HandshakeStatus.CSRF_MISMATCH
        assert first_results == []
        assert second_results == [result]

    def test_callback_with_nothing_pending(self, controller, exchange):
        result = controller.handle_callback("brewnet://callback?code=c&state=s")

        exchange.exchange_code.assert_not_called()
        assert result.error_code == AuthErrorCode.CSRF_MISMATCH

    def test_missing_code_is_invalid(self, controller, launcher, exchange):
        controller.begin(lambda result: None)
        result = controller.handle_callback(f"brewnet://callback?state={launcher.last_state}")

        exchange.exchange_code.assert_not_called()
        assert result.error_code == AuthErrorCode.CALLBACK_INVALID

    def test_failed_exchange_carries_reason(self, controller, launcher, exchange):
        exchange.exchange_code.return_value = ExchangeResult.fail("No data received from backend")
        controller.begin(lambda result: None)

        result = controller.handle_callback(
            f"brewnet://callback?code=c&state={launcher.last_state}"
        )

        assert result.error_code == AuthErrorCode.EXCHANGE_FAILED
        assert result.error_message == "No data received from backend"
        assert controller.status == HandshakeStatus.FAILED


class TestAgentOutcome:

    def test_callback_url_from_agent(self, controller, launcher):
        results = []
        controller.begin(results.append)
        launcher.finish(UserAgentOutcome(
            callback_url=f"brewnet://callback?code=c&state={launcher.last_state}",
        ))
        assert results[0].success is True

    def test_agent_error(self, controller, launcher):
        results = []
        controller.begin(results.append)
        launcher.finish(UserAgentOutcome(error="tls failure"))

        assert results[0].error_code == AuthErrorCode.EXCHANGE_FAILED
        assert results[0].error_message == "Authentication failed: tls failure"

    def test_user_cancelled(self, controller, launcher, exchange):
        results = []
        controller.begin(results.append)
        launcher.finish(UserAgentOutcome(cancelled=True))

        exchange.exchange_code.assert_not_called()
        assert results[0].error_code == AuthErrorCode.CALLBACK_INVALID


class TestSystemBrowserLauncher:

    def test_deliver_callback_to_waiting_session(self, logger):
        opened, outcomes = [], []
        launcher = SystemBrowserLauncher(logger, opener=lambda url: opened.append(url) or True)

        assert launcher.launch("https://auth.test/x", "brewnet", outcomes.append) is True
        assert launcher.deliver_callback("brewnet://callback?code=c") is True

        assert opened == ["https://auth.test/x"]
        assert outcomes[0].callback_url == "brewnet://callback?code=c"
        assert launcher.deliver_callback("brewnet://callback?code=c") is False

    def test_wrong_scheme_is_ignored(self, logger):
        outcomes = []
        launcher = SystemBrowserLauncher(logger, opener=lambda url: True)
        launcher.launch("https://auth.test/x", "brewnet", outcomes.append)

        assert launcher.deliver_callback("evil://callback?code=c") is False
        assert outcomes == []

    def test_opener_refusal(self, logger):
        outcomes = []
        launcher = SystemBrowserLauncher(logger, opener=lambda url: False)

        assert launcher.launch("https://auth.test/x", "brewnet", outcomes.append) is False
        launcher.cancel()
        assert outcomes == []

    def test_cancel_reports_once(self, logger):
        outcomes = []
        launcher = SystemBrowserLauncher(logger, opener=lambda url: True)
        launcher.launch("https://auth.test/x", "brewnet", outcomes.append)

        launcher.cancel()
        launcher.cancel()

        assert len(outcomes) == 1
        assert outcomes[0].cancelled is True
