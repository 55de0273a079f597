"""Logging configuration for the CLI."""
from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Chatty third-party loggers kept at WARNING regardless of the chosen level.
_QUIET_LOGGERS = ("aiohttp", "asyncio")


def configure_logging(level: str | int = "INFO") -> None:
    """Configure the root logger from a level name or number.

    Unknown level names fall back to INFO.
    """
    resolved = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logging.basicConfig(format=_FORMAT, force=True)
    logging.getLogger().setLevel(resolved)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
