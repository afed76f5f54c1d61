"""Centralized logging configuration for the ``statement_pipeline`` package.

- ``configure_logging(...)`` attaches one ``StreamHandler`` to the package
  logger. Entrypoints (the CLI) call it once at startup.
- ``get_logger(name)`` is what library modules use. Until logging is
  configured the package logger carries a ``NullHandler`` so imports stay quiet.

Library modules never attach handlers of their own.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "statement_pipeline"
_LEVEL_ENV = "STATEMENT_PIPELINE_LOG_LEVEL"
_CONFIGURED = False


def _coerce_level(level: int | str | None) -> int | None:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        # Numeric strings or standard level names (INFO/DEBUG/etc.).
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = getattr(logging, name, None)
        if isinstance(numeric, int):
            return numeric
    return None


def _parse_level(level: int | str | None) -> int:
    resolved = _coerce_level(level)
    if resolved is None:
        resolved = _coerce_level(os.getenv(_LEVEL_ENV))
    return logging.INFO if resolved is None else resolved


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package logger once.

    ``level`` falls back to ``STATEMENT_PIPELINE_LOG_LEVEL`` and then INFO.
    Later calls are no-ops.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(
        logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s")
    )

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
