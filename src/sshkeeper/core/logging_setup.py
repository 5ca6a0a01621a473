"""Logging configuration for sshkeeper."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: str | int | None, verbosity: int = 0) -> int:
    """Turn a level name and a ``-v`` count into a logging level.

    Args:
        level: Level name or number from settings. Defaults to WARNING.
        verbosity: Number of ``-v`` flags; 1 gives INFO, 2 or more DEBUG.

    Returns:
        Numeric logging level.
    """
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    if isinstance(level, int):
        return level
    if level:
        resolved = logging.getLevelName(level.upper())
        if isinstance(resolved, int):
            return resolved
    return logging.WARNING


def setup_logging(level: int = logging.WARNING) -> logging.Logger:
    """Configure the package logger with a single stderr handler.

    Args:
        level: Logging level.

    Returns:
        The ``sshkeeper`` logger.
    """
    logger = logging.getLogger("sshkeeper")
    logger.handlers.clear()
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
