"""Logging configuration for the assessment service."""

import logging
import sys
from typing import Optional

from app.assessment import config

_logger: Optional[logging.Logger] = None


def setup_logger() -> logging.Logger:
    """Sets up and returns the service logger.

    Console output only; level and format come from ``LOG_LEVEL`` and
    ``LOG_FORMAT``. Module loggers created with :func:`get_logger` are
    children of this one and inherit its handler.
    """
    global _logger
    if _logger:
        return _logger

    logger = logging.getLogger("assessment")
    logger.setLevel(config.LOG_LEVEL)

    # Prevent adding multiple handlers if called again
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(config.LOG_LEVEL)
        handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
        logger.addHandler(handler)

    _logger = logger

    if config.DEBUG:
        logger.debug("Logger initialized in DEBUG mode.")
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Returns the service logger, or a named child of it."""
    root = _logger or setup_logger()
    if name:
        return root.getChild(name)
    return root
