"""Exception hierarchy shared by the log writer, scheduler and capture workers."""

from __future__ import annotations

from typing import Optional


class SensorSuiteError(Exception):
    """Base class for all SensorSuite failures."""


class ConfigurationError(SensorSuiteError):
    """A required collaborator is missing or a setting is invalid."""


class LogIOError(SensorSuiteError, OSError):
    """The session log could not be created, opened or written."""


class SensorUnavailable(SensorSuiteError):
    """A sensor category's hardware or permission is absent."""

    def __init__(self, category: str, reason: str = "") -> None:
        self.category = category
        self.reason = reason
        message = f"{category} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransientReadError(SensorSuiteError):
    """A single read from a collaborator failed; the next tick may succeed."""


class BackgroundSaveError(SensorSuiteError):
    """A worker thread failed to encode or write a capture artifact."""

    def __init__(self, filename: str, cause: Optional[BaseException] = None) -> None:
        self.filename = filename
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to save {filename}{detail}")


__all__ = [
    "BackgroundSaveError",
    "ConfigurationError",
    "LogIOError",
    "SensorSuiteError",
    "SensorUnavailable",
    "TransientReadError",
]
