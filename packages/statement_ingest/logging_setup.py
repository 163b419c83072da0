"""Logging for ``statement_ingest``: modules log, only the CLI attaches output."""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

ROOT_LOGGER = "statement_ingest"
LEVEL_ENV_VAR = "STATEMENT_INGEST_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """Map ``level`` (or ``$STATEMENT_INGEST_LOG_LEVEL``) to a logging level.

    Unknown names fall back to INFO.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    mapped = logging.getLevelNamesMapping().get(name)
    return mapped if mapped is not None else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    stream: IO[str] = sys.stderr,
) -> logging.Handler:
    """Send package records to ``stream`` (stderr). Later calls reuse the handler."""

    global _handler
    root = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        return _handler

    for existing in [h for h in root.handlers if isinstance(h, logging.NullHandler)]:
        root.removeHandler(existing)

    _handler = logging.StreamHandler(stream)
    _handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root.setLevel(resolve_level(level))
    root.addHandler(_handler)
    root.propagate = False
    return _handler


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if _handler is None and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
