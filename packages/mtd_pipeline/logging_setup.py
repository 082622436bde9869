"""Logging for the ``mtd_pipeline`` package.

Library modules obtain loggers through :func:`get_logger` and never attach
handlers. Entrypoints (the CLI or a hosting service) call
:func:`configure_logging` once; until then the ``"mtd_pipeline"`` logger only
carries a ``NullHandler``.

Messages are compact ``area:event key=value`` lines, for example
``classify_batch:row_retry row_index=3 attempt=2 error=TimeoutError``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "mtd_pipeline"
LEVEL_ENV_VAR = "MTD_PIPELINE_LOG_LEVEL"

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"
_HANDLER_NAME = "mtd_pipeline.stream"


def _coerce_level(value: int | str | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = value.strip().upper()
    if text.isdigit():
        return int(text)
    return logging.getLevelNamesMapping().get(text)


def resolve_level(level: int | str | None = None) -> int:
    """Explicit ``level`` first, then ``MTD_PIPELINE_LOG_LEVEL``, then ``INFO``."""

    for candidate in (level, os.getenv(LEVEL_ENV_VAR)):
        numeric = _coerce_level(candidate)
        if numeric is not None:
            return numeric
    return logging.INFO


def _installed_handler(logger: logging.Logger) -> logging.Handler | None:
    return next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach one ``StreamHandler`` to the package logger and return it.

    Repeated calls leave the existing handler in place.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    if _installed_handler(logger) is not None:
        return logger

    resolved = resolve_level(level)
    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["LEVEL_ENV_VAR", "PACKAGE_LOGGER", "configure_logging", "get_logger", "resolve_level"]
