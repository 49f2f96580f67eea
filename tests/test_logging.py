"""Tests for the logging configuration."""

from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

import pybinfit.logging


@pytest.fixture
def restore_logging():
    """Undo the global logging changes made by setup."""
    root = logging.getLogger()
    package = logging.getLogger("pybinfit")
    previous = (root.handlers[:], root.level, package.handlers[:], package.level)
    yield
    for handler in package.handlers:
        handler.close()
    root.handlers, package.handlers = previous[0], previous[2]
    root.setLevel(previous[1])
    package.setLevel(previous[3])
    for name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and not name.startswith("pybinfit"):
            logger.disabled = False


@pytest.mark.usefixtures("restore_logging")
class TestSetup:
    """Test logging setup."""

    def test_rich_handler(self):
        """The root logger gets a rich handler, pybinfit logs at INFO."""
        pybinfit.logging.setup()
        assert any(isinstance(handler, RichHandler) for handler in logging.getLogger().handlers)
        assert logging.getLogger("pybinfit").level == logging.INFO

    def test_level_override(self):
        """The pybinfit level can be overridden."""
        pybinfit.logging.setup(level="DEBUG")
        assert logging.getLogger("pybinfit").level == logging.DEBUG

    def test_module_loggers_stay_enabled(self):
        """Module loggers created before setup keep emitting."""
        logger = logging.getLogger("pybinfit.scheduler")
        pybinfit.logging.setup()
        assert not logger.disabled

    def test_log_file(self, tmp_path):
        """Records are copied to the log file with their thread name."""
        log_file = tmp_path / "fit.log"
        pybinfit.logging.setup(log_file=log_file)
        logging.getLogger("pybinfit.sample_set").info("Creating parallelisable jobs")
        for handler in logging.getLogger("pybinfit").handlers:
            handler.flush()
        text = log_file.read_text()
        assert "[INFO] MainThread pybinfit.sample_set: Creating parallelisable jobs" in text


def test_logging_config_without_file():
    """Without a log file only the rich handler is configured."""
    config = pybinfit.logging.logging_config("WARNING")
    assert list(config["handlers"]) == ["rich"]
    assert config["loggers"]["pybinfit"] == {"handlers": [], "level": "WARNING", "propagate": True}
