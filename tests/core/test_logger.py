"""
Tests for logging setup.
"""

import logging

import pytest
import structlog

from src.core.logger import LOG_LEVELS, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(level=logging.DEBUG)


class TestSetupLogging:
    """Tests for setup_logging"""

    def test_sets_root_level(self):
        """Test that the root logger follows the requested level"""
        setup_logging(level=logging.WARNING)

        assert logging.getLogger().level == logging.WARNING

    def test_none_level_defaults_to_info(self):
        """Test the default level"""
        setup_logging(level=None)

        assert logging.getLogger().level == logging.INFO

    def test_json_renderer(self):
        """Test that json_logs selects the JSON renderer"""
        setup_logging(json_logs=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_json_from_environment(self, monkeypatch):
        """Test that LOG_FORMAT=json selects the JSON renderer"""
        monkeypatch.setenv("LOG_FORMAT", "json")

        setup_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer_by_default(self, monkeypatch):
        """Test the default renderer"""
        monkeypatch.delenv("LOG_FORMAT", raising=False)

        setup_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_log_levels():
    assert LOG_LEVELS["WARNING"] == logging.WARNING
    assert set(LOG_LEVELS) == {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
