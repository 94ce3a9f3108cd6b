"""Process-wide logging configuration for the scheduling engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from pasu.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ENGINE_LOGGER_NAME = "pasu"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler once and set the engine log level.

    Later calls with an explicit level only adjust the level of the ``pasu``
    logger tree, so a caller can turn on per-iteration DEBUG output for the
    search loop without reconfiguring the root handler.
    """

    global _LOGGER_INITIALIZED
    resolved_level = (level or get_settings().log_level).upper()

    if not _LOGGER_INITIALIZED:
        logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stdout)
        _LOGGER_INITIALIZED = True
    if level is not None:
        logging.getLogger(ENGINE_LOGGER_NAME).setLevel(resolved_level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the requested module, configuring logging on first use."""
    configure_logging()
    return logging.getLogger(name)
