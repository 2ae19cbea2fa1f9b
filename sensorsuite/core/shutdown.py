"""Shutdown coordination - single point of control for graceful teardown."""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable

from .logging_utils import get_module_logger


class ShutdownState(Enum):
    RUNNING = "running"
    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class ShutdownCoordinator:
    """
    Runs registered cleanup callbacks exactly once.

    Shutdown may be requested by a signal, by the collection duration
    elapsing or by the application itself; only the first request runs the
    callbacks, later ones are ignored.
    """

    def __init__(self) -> None:
        self.logger = get_module_logger("ShutdownCoordinator")
        self._state = ShutdownState.RUNNING
        self._requested = asyncio.Event()
        self._complete = asyncio.Event()
        self._cleanup_callbacks: list[Callable[[], Awaitable[None]]] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        return self._state in (ShutdownState.REQUESTED, ShutdownState.IN_PROGRESS)

    @property
    def is_complete(self) -> bool:
        return self._state == ShutdownState.COMPLETE

    def register_cleanup(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Callbacks run in registration order."""
        self._cleanup_callbacks.append(callback)
        self.logger.debug("Registered cleanup callback: %s", getattr(callback, "__name__", callback))

    def request_shutdown(self, source: str = "unknown") -> None:
        """Non-async entry point for signal handlers."""
        if self._state != ShutdownState.RUNNING or self._requested.is_set():
            return
        self.logger.info("Shutdown requested by: %s", source)
        self._requested.set()

    async def wait_for_request(self) -> None:
        await self._requested.wait()

    async def initiate_shutdown(self, source: str = "unknown") -> None:
        shutdown_start = time.perf_counter()

        async with self._lock:
            if self._state != ShutdownState.RUNNING:
                self.logger.debug(
                    "Shutdown already initiated (state=%s), ignoring request from %s",
                    self._state.value,
                    source,
                )
                return
            self.logger.info("Shutdown initiated by: %s", source)
            self._state = ShutdownState.REQUESTED
            self._requested.set()

        await self._execute_cleanup()

        async with self._lock:
            self._state = ShutdownState.COMPLETE
            self._complete.set()

        self.logger.info("Shutdown complete in %.3fs", time.perf_counter() - shutdown_start)

    async def _execute_cleanup(self) -> None:
        async with self._lock:
            self._state = ShutdownState.IN_PROGRESS

        total = len(self._cleanup_callbacks)
        for index, callback in enumerate(self._cleanup_callbacks, 1):
            name = getattr(callback, "__name__", repr(callback))
            try:
                started = time.perf_counter()
                self.logger.debug("Starting cleanup %d/%d: %s", index, total, name)
                await callback()
                self.logger.debug("Completed %s in %.3fs", name, time.perf_counter() - started)
            except Exception as exc:
                self.logger.error("Error in cleanup callback %s: %s", name, exc, exc_info=True)

    async def wait_for_shutdown(self) -> None:
        await self._complete.wait()


__all__ = ["ShutdownCoordinator", "ShutdownState"]
