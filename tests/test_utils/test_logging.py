"""Tests for logging setup."""

import logging

from turingpi.utils.logging import setup_logging


class TestSetupLogging:
    """Test setup_logging."""

    def teardown_method(self):
        for name in ("docker", "urllib3", "asyncio"):
            logging.getLogger(name).setLevel(logging.NOTSET)

    def test_sets_root_level(self):
        """Test the root logger follows the requested level."""
        setup_logging("warning")
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_defaults_to_info(self):
        """Test an unknown level name falls back to INFO."""
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_quiets_noisy_loggers(self):
        """Test docker client chatter is capped at WARNING."""
        setup_logging("INFO")
        assert logging.getLogger("docker").level == logging.WARNING
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_debug_keeps_noisy_loggers(self):
        """Test DEBUG leaves third-party loggers alone."""
        setup_logging("DEBUG")
        assert logging.getLogger("docker").level == logging.NOTSET
