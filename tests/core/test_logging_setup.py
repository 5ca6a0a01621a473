"""Tests for sshkeeper.core.logging_setup module."""

import logging

import pytest

from sshkeeper.core.logging_setup import LOG_FORMAT, resolve_level, setup_logging


class TestResolveLevel:
    """Tests for resolve_level function."""

    @pytest.mark.parametrize(
        "level,verbosity,expected",
        [
            (None, 0, logging.WARNING),
            ("info", 0, logging.INFO),
            ("DEBUG", 0, logging.DEBUG),
            ("bogus", 0, logging.WARNING),
            (logging.ERROR, 0, logging.ERROR),
            ("ERROR", 1, logging.INFO),
            ("ERROR", 2, logging.DEBUG),
            (None, 3, logging.DEBUG),
        ],
    )
    def test_levels(self, level, verbosity: int, expected: int) -> None:
        """Test settings levels and -v counts."""
        assert resolve_level(level, verbosity) == expected


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_single_handler(self) -> None:
        """Test repeated setup keeps one handler."""
        setup_logging(logging.INFO)
        logger = setup_logging(logging.DEBUG)

        assert logger.name == "sshkeeper"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert logger.handlers[0].formatter._fmt == LOG_FORMAT
        assert logger.propagate is False

    def test_child_loggers_emit(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test module loggers write through the package handler."""
        setup_logging(logging.INFO)
        logging.getLogger("sshkeeper.ssh.backup").info("Created backup x")

        err = capsys.readouterr().err
        assert "sshkeeper.ssh.backup - INFO - Created backup x" in err
