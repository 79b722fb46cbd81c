"""Logging setup for the admission engine namespace."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from admission_engine.utils.config import get_settings


ENGINE_LOGGER_NAME = "admission_engine"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured_level: Optional[str] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Attach one stdout handler to the engine logger.

    Repeated calls are no-ops unless an explicit level differs from the one
    already applied. Records from modules outside the package (app.py,
    scripts) are routed through the same logger by ``get_logger``.
    """
    global _configured_level

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()
    if _configured_level == resolved_level:
        return

    engine_logger = logging.getLogger(ENGINE_LOGGER_NAME)
    if _configured_level is None:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        engine_logger.addHandler(handler)
        engine_logger.propagate = False
    engine_logger.setLevel(resolved_level)
    _configured_level = resolved_level

    engine_logger.debug(
        "Logging configured | app=%s | version=%s | level=%s",
        settings.app_name,
        settings.app_version,
        resolved_level,
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the engine namespace for ``name``."""
    configure_logging()
    if name == ENGINE_LOGGER_NAME or name.startswith(f"{ENGINE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ENGINE_LOGGER_NAME}.{name}")
