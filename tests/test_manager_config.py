"""
Unit tests for SessionManager construction and configuration.
"""

import logging

import pytest

from social.graze.sessions.errors import ConfigurationError
from social.graze.sessions.manager import (
    DEFAULT_COOKIE_NAME,
    DEFAULT_MOBILE_SCHEME,
    DEFAULT_MOBILE_TOKEN_TTL,
    DEFAULT_SESSION_TTL,
    SessionConfig,
    SessionManager,
    null_logger,
)
from social.graze.sessions.metrics import NoOpMetricsClient
from tests.test_helpers import (
    OTHER_SECRET,
    TEST_BASE_URL,
    TEST_SECRET,
    MockOAuthClient,
    MockStorage,
)


def make_config(**overrides) -> SessionConfig:
    values = {
        "oauth_client": MockOAuthClient(),
        "storage": MockStorage(),
        "cookie_secret": TEST_SECRET,
        "base_url": TEST_BASE_URL,
    }
    values.update(overrides)
    return SessionConfig(**values)


class TestRequiredSettings:
    @pytest.mark.parametrize(
        "field", ["oauth_client", "storage", "cookie_secret", "base_url"]
    )
    def test_missing_required_field(self, field):
        with pytest.raises(ConfigurationError) as exc_info:
            SessionManager(make_config(**{field: None}))

        assert exc_info.value.message == f"{field} is required"
        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_empty_cookie_secret(self):
        with pytest.raises(ConfigurationError, match="cookie_secret is required"):
            SessionManager(make_config(cookie_secret=""))

    def test_short_cookie_secret(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SessionManager(make_config(cookie_secret="short"))

        assert exc_info.value.message == (
            "cookie_secret must be at least 32 characters for secure encryption"
        )

    def test_secret_of_exactly_32_characters(self):
        assert len(TEST_SECRET) == 32
        SessionManager(make_config(cookie_secret=TEST_SECRET))

    def test_short_previous_secret(self):
        with pytest.raises(ConfigurationError, match="at least 32 characters"):
            SessionManager(make_config(previous_cookie_secrets=["short"]))

    @pytest.mark.parametrize("field", ["session_ttl", "mobile_token_ttl"])
    @pytest.mark.parametrize("value", [0, -1])
    def test_non_positive_ttl(self, field, value):
        with pytest.raises(ConfigurationError, match=field):
            SessionManager(make_config(**{field: value}))


class TestDefaults:
    def test_default_values(self):
        manager = SessionManager(make_config())

        assert manager.config.cookie_name == DEFAULT_COOKIE_NAME == "sid"
        assert manager.config.session_ttl == DEFAULT_SESSION_TTL == 604800
        assert manager.config.mobile_scheme == DEFAULT_MOBILE_SCHEME == "app://auth-callback"
        assert manager.config.mobile_token_ttl == DEFAULT_MOBILE_TOKEN_TTL == 1209600
        assert manager.refresh_lock is None

    def test_default_logger_is_silent(self):
        manager = SessionManager(make_config())

        assert manager.logger.propagate is False
        assert all(
            isinstance(handler, logging.NullHandler)
            for handler in manager.logger.handlers
        )

    def test_default_metrics_client(self):
        manager = SessionManager(make_config())

        assert isinstance(manager.metrics_client, NoOpMetricsClient)

    def test_injected_logger(self):
        logger = logging.getLogger("tests.sessions")

        manager = SessionManager(make_config(logger=logger))

        assert manager.logger is logger

    def test_config_is_not_mutated(self):
        config = make_config()

        manager = SessionManager(config)

        assert config.logger is None
        assert manager.config is not config


def test_null_logger_discards_records(caplog):
    logger = null_logger()

    with caplog.at_level(logging.DEBUG):
        logger.warning("should not appear")

    assert "should not appear" not in caplog.text


def test_previous_secrets_accepted():
    """Tokens sealed with a retired secret still unseal after rotation."""
    old_manager = SessionManager(make_config(cookie_secret=OTHER_SECRET))
    rotated_manager = SessionManager(make_config(previous_cookie_secrets=[OTHER_SECRET]))

    sealed = old_manager.seal_mobile_token("did:plc:abc")

    assert rotated_manager.codec.unseal(sealed) == {"did": "did:plc:abc"}


class TestFromSettings:
    def test_from_settings(self):
        from social.graze.sessions.app.config import Settings

        settings = Settings(
            cookie_secret=TEST_SECRET,
            base_url=TEST_BASE_URL,
            cookie_name="app_sid",
            session_ttl=3600,
            previous_cookie_secrets=[OTHER_SECRET],
        )
        oauth_client = MockOAuthClient()
        storage = MockStorage()

        config = SessionConfig.from_settings(
            settings, oauth_client=oauth_client, storage=storage
        )

        assert config.oauth_client is oauth_client
        assert config.storage is storage
        assert config.cookie_secret == TEST_SECRET
        assert config.base_url == TEST_BASE_URL
        assert config.cookie_name == "app_sid"
        assert config.session_ttl == 3600
        assert config.previous_cookie_secrets == [OTHER_SECRET]
        assert config.mobile_scheme == DEFAULT_MOBILE_SCHEME
        SessionManager(config)
