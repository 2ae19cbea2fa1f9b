"""Component-tagged loggers under the ``sensorsuite`` namespace."""

from __future__ import annotations

import logging
from typing import Optional, Union

ROOT_LOGGER_NAME = "sensorsuite"


class StructuredLogger:
    """Logger facade that tags each message as ``[Component] message``.

    Anything not defined here (handlers, level, ``isEnabledFor``...) is
    forwarded to the wrapped :class:`logging.Logger`.
    """

    __slots__ = ("_logger", "_component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        self._logger = logger
        if component is None:
            component = logger.name.rpartition(".")[2]
            if component == ROOT_LOGGER_NAME:
                component = "SensorSuite"
        self._component = component

    def __getattr__(self, item):
        return getattr(self._logger, item)

    @property
    def component(self) -> str:
        return self._component

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _tag(self, message: object, args: tuple) -> str:
        text = str(message)
        if args:
            try:
                text = text % args
            except (TypeError, ValueError):
                text = f"{text} {args!r}"
        return f"[{self._component}] {text}"

    def log(self, level: int, message: object, *args, **kwargs) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._tag(message, args), **kwargs)

    def debug(self, message: object, *args, **kwargs) -> None:
        self.log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: object, *args, **kwargs) -> None:
        self.log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: object, *args, **kwargs) -> None:
        self.log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: object, *args, **kwargs) -> None:
        self.log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: object, *args, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, message, *args, **kwargs)

    def critical(self, message: object, *args, **kwargs) -> None:
        self.log(logging.CRITICAL, message, *args, **kwargs)


LoggerLike = Union[StructuredLogger, logging.Logger, None]


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Logger for one component, e.g. ``get_module_logger("BufferedLog")``."""
    if not name:
        return StructuredLogger(logging.getLogger(ROOT_LOGGER_NAME))
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return StructuredLogger(logging.getLogger(name))


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Accept an injected logger of either kind, or build a module logger."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    fallback = get_module_logger(fallback_name)
    if component is not None:
        return StructuredLogger(fallback.logger, component=component)
    return fallback


__all__ = [
    "LoggerLike",
    "ROOT_LOGGER_NAME",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
