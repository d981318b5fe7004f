"""Centralized logging configuration for the media wall service."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger with sensible defaults."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


def resolve_log_level(name: str | None, *, default: int = logging.INFO) -> int:
    """Translate a level name such as ``"debug"`` into a :mod:`logging` constant."""

    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def get_log_file_path(data_root: Path) -> Path:
    """Return the default path for the service log file."""

    return data_root / "mediawall.log"


__all__ = ["configure_logging", "get_log_file_path", "resolve_log_level", "DEFAULT_LOG_FORMAT"]
