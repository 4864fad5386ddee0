"""Logging setup for the live metrics engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

DEFAULT_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: int | str = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Configure the root logger with a stdout handler and optional file.

    Returns the package logger.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf8"))
    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    logger = logging.getLogger("live_metrics")
    logger.debug("logging initialised (level=%s)", logging.getLevelName(level))
    return logger


__all__ = ["setup_logging"]
