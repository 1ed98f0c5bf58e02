"""
Unit tests for social.graze.sessions.app.cli
"""

import json
import logging
from unittest.mock import patch

import pytest

from social.graze.sessions.app.cli import LOG_FORMAT, configure_logging
from social.graze.sessions.app.config import Settings
from tests.test_helpers import TEST_SECRET


@pytest.fixture(autouse=True)
def access_logger():
    access_logger = logging.getLogger("aiohttp.access")
    level = access_logger.level
    yield access_logger
    access_logger.setLevel(level)


class TestConfigureLogging:
    def test_default(self, access_logger):
        with patch("logging.basicConfig") as basic_config:
            configure_logging(Settings(cookie_secret=TEST_SECRET))

        basic_config.assert_called_once_with(format=LOG_FORMAT, level=logging.INFO)
        assert access_logger.level == logging.WARNING

    def test_debug(self, access_logger):
        with patch("logging.basicConfig") as basic_config:
            configure_logging(Settings(cookie_secret=TEST_SECRET, debug=True))

        basic_config.assert_called_once_with(format=LOG_FORMAT, level=logging.DEBUG)
        assert access_logger.level == logging.DEBUG

    def test_config_file(self, tmp_path):
        config = {"version": 1, "disable_existing_loggers": False}
        config_file = tmp_path / "logging.json"
        config_file.write_text(json.dumps(config))

        with (
            patch("social.graze.sessions.app.cli.dictConfig") as dict_config,
            patch("logging.basicConfig") as basic_config,
        ):
            configure_logging(
                Settings(cookie_secret=TEST_SECRET, logging_config_file=str(config_file))
            )

        dict_config.assert_called_once_with(config)
        basic_config.assert_not_called()
