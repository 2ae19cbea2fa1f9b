"""Buffered, thread-safe CSV session log with a policy-driven flush."""

from __future__ import annotations

import csv
import io
import os
import random
import string
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from .errors import LogIOError
from .logging_utils import get_module_logger
from .paths import sensor_data_dir

logger = get_module_logger("BufferedLog")

SUBJECT_ID_ALPHABET = string.ascii_uppercase + string.digits
SUBJECT_ID_LENGTH = 6
FILENAME_TIME_FORMAT = "%Y%m%d_%H%M%S"


@dataclass(slots=True, frozen=True)
class LogSession:
    subject_id: str
    created_at: datetime
    file_path: Path


@dataclass(slots=True, frozen=True)
class FlushPolicy:
    """Thresholds that trigger a flush after a write.

    Any one of them is sufficient: every ``flush_interval`` entries, more than
    ``buffer_size`` buffered bytes, or more than ``auto_flush_time`` seconds
    since the last flush.
    """

    buffer_size: int = 8192
    flush_interval: int = 100
    auto_flush_time: float = 5.0


def format_csv_row(fields: Sequence[object]) -> str:
    """Serialize one row with minimal RFC4180 quoting, newline terminated."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(["" if field is None else str(field) for field in fields])
    return buffer.getvalue()


def generate_subject_id(rng: Optional[random.Random] = None) -> str:
    chooser = rng or random
    return "".join(chooser.choice(SUBJECT_ID_ALPHABET) for _ in range(SUBJECT_ID_LENGTH))


class BufferedLog:
    """Owns the session file, the in-memory buffer and the flush policy.

    ``_buffer``, ``_entry_count``, ``_last_flush_time`` and ``_file`` change
    together under ``_lock``; callers never see one updated without the others.
    """

    def __init__(
        self,
        output_dir: Path,
        policy: Optional[FlushPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.policy = policy or FlushPolicy()
        self._clock = clock
        self._now = now
        self._rng = rng
        self._lock = threading.RLock()
        self._file: Optional[TextIO] = None
        self._session: Optional[LogSession] = None
        self._buffer: list[str] = []
        self._buffered_bytes = 0
        self._entry_count = 0
        self._flush_count = 0
        self._last_flush_time = clock()

    # ------------------------------------------------------------------
    # Session lifecycle

    def start(self, subject_id: Optional[str] = None) -> LogSession:
        """Open a new session file, stopping any active session first."""
        with self._lock:
            if self._file is not None:
                logger.info("Session already active; stopping it before starting a new one")
                self.stop()

            resolved = subject_id.strip() if subject_id and subject_id.strip() else generate_subject_id(self._rng)
            created_at = self._now()
            directory = sensor_data_dir(self.output_dir)
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.error("Failed to create log directory %s: %s", directory, exc)
                raise LogIOError(f"Cannot create log directory {directory}: {exc}") from exc

            file_path, handle = self._open_unique(directory, resolved, created_at)

            self._file = handle
            self._session = LogSession(subject_id=resolved, created_at=created_at, file_path=file_path)
            self._buffer.clear()
            self._buffered_bytes = 0
            self._entry_count = 0
            self._flush_count = 0
            self._last_flush_time = self._clock()

        logger.info("Started CSV recording with subject ID %s", resolved)
        logger.info("File path: %s", file_path)
        return self._session

    def stop(self) -> None:
        """Flush and close the active session; a no-op when none is active."""
        with self._lock:
            if self._file is None:
                logger.debug("Stop requested with no active session")
                return

            if not self.flush() and self._buffer:
                logger.error(
                    "Final flush failed; discarding %d buffered bytes (%d lines)",
                    self._buffered_bytes,
                    len(self._buffer),
                )
                self._buffer.clear()
                self._buffered_bytes = 0
            handle = self._file
            session = self._session
            entries = self._entry_count
            self._file = None
            self._session = None
            try:
                handle.close()
            except OSError as exc:
                logger.error("Error closing %s: %s", session.file_path if session else "log", exc)

        logger.info("Stopped CSV recording. Total entries written: %d", entries)

    def _open_unique(self, directory: Path, subject_id: str, created_at: datetime) -> tuple[Path, TextIO]:
        stem = f"SensorData_{subject_id}_{created_at.strftime(FILENAME_TIME_FORMAT)}"
        suffix = 0
        while True:
            name = f"{stem}.csv" if suffix == 0 else f"{stem}_{suffix}.csv"
            path = directory / name
            try:
                return path, open(path, "x", encoding="utf-8", newline="")
            except FileExistsError:
                suffix += 1
            except OSError as exc:
                logger.error("Failed to open %s for writing: %s", path, exc)
                raise LogIOError(f"Cannot open {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes

    def write_header(self, fields: Sequence[str]) -> None:
        if not self.is_recording:
            logger.warning("Cannot write header - recording not started")
            return
        self._append_line(",".join(str(field) for field in fields) + "\n")

    def write_row(self, fields: Sequence[object]) -> None:
        if not self.is_recording:
            logger.warning("Cannot write data - recording not started")
            return
        self._append_line(format_csv_row(fields))

    def _append_line(self, line: str) -> None:
        with self._lock:
            if self._file is None:
                logger.warning("Dropping line written after the session closed")
                return
            self._buffer.append(line)
            self._buffered_bytes += len(line.encode("utf-8"))
            self._entry_count += 1
            if self._flush_due():
                self.flush()

    def _flush_due(self) -> bool:
        policy = self.policy
        return (
            self._entry_count % policy.flush_interval == 0
            or self._buffered_bytes > policy.buffer_size
            or self._clock() - self._last_flush_time > policy.auto_flush_time
        )

    # ------------------------------------------------------------------
    # Flushing

    def flush(self) -> bool:
        """Write buffered lines to disk; returns True when data was flushed."""
        with self._lock:
            if self._file is None or not self._buffer:
                return False

            data = "".join(self._buffer)
            try:
                self._file.write(data)
            except (OSError, ValueError) as exc:
                logger.error("Error flushing buffer (%d bytes kept): %s", self._buffered_bytes, exc)
                return False

            self._buffer.clear()
            self._buffered_bytes = 0
            self._last_flush_time = self._clock()
            self._flush_count += 1

            try:
                self._file.flush()
                os.fsync(self._file.fileno())
            except (OSError, ValueError) as exc:
                logger.error("Error syncing log file to disk: %s", exc)
            return True

    def flush_if_due(self) -> bool:
        """Apply the time trigger without a write."""
        with self._lock:
            if self._file is None:
                return False
            if self._clock() - self._last_flush_time <= self.policy.auto_flush_time:
                return False
            return self.flush()

    def safety_flush(self) -> bool:
        """Flush on focus or visibility loss; the session stays open."""
        flushed = self.flush()
        if flushed:
            logger.debug("Safety flush completed")
        return flushed

    # ------------------------------------------------------------------
    # Introspection

    @property
    def is_recording(self) -> bool:
        return self._file is not None

    @property
    def session(self) -> Optional[LogSession]:
        return self._session

    @property
    def subject_id(self) -> Optional[str]:
        return self._session.subject_id if self._session else None

    @property
    def file_path(self) -> Optional[Path]:
        return self._session.file_path if self._session else None

    @property
    def entry_count(self) -> int:
        return self._entry_count

    @property
    def flush_count(self) -> int:
        return self._flush_count

    @property
    def buffered_bytes(self) -> int:
        return self._buffered_bytes


__all__ = [
    "BufferedLog",
    "FlushPolicy",
    "LogSession",
    "format_csv_row",
    "generate_subject_id",
]
