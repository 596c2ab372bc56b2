"""Logging helpers for tutorscribe."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

_LOGGER_CONFIGURED = False

LOG_LEVEL_ENV = "TUTORSCRIBE_LOG_LEVEL"

# Third-party loggers that are chatty at INFO while a stream is running.
_NOISY_LOGGERS = ("websockets", "urllib3")


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, logging.INFO)
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure basic logging once for the application."""

    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED:
        return

    resolved = _resolve_level(level)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    _LOGGER_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Convenience helper that ensures logging is configured."""

    configure_logging()
    return logging.getLogger(name or "tutorscribe")


__all__ = ["LOG_LEVEL_ENV", "configure_logging", "get_logger"]
