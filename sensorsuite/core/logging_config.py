"""Process-wide logging setup for the sensorsuite command."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUP_COUNT = 3

# Device libraries that are chatty at INFO.
NOISY_LOGGERS = ("sounddevice", "asyncio")

_configured = False


def _level_number(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level '{level}'")
    return number


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """Install the console and rotating session-log handlers on the root logger.

    A second call without ``force`` only changes the level.
    """
    global _configured
    numeric = _level_number(level)
    root = logging.getLogger()
    root.setLevel(numeric)
    if _configured and not force:
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        )
    if not handlers:
        handlers.append(logging.NullHandler())

    for handler in handlers:
        handler.setLevel(numeric)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    _configured = True


__all__ = ["LOG_DATEFMT", "LOG_FORMAT", "configure_logging"]
