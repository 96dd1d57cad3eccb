"""Console logging setup for command-line runs."""
from __future__ import annotations

import logging

from rich.logging import RichHandler

PACKAGE_LOGGER = "tripdist"


def configure(level: str = "INFO") -> logging.Logger:
    """Route ``tripdist`` log records through one rich console handler.

    Only the package logger is touched, so applications embedding the library
    keep control of the root logger. Repeated calls just change the level.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper())
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    return logger
