"""Named asyncio tasks owned by the scheduler and the application."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


class AsyncTaskManager:
    """Tracks running tasks by name so they can be cancelled as a group.

    Capture loops register here (``audio_file``, ``video_capture``) as do
    the app's tick and status loops. A task that fails is logged when it
    finishes; nothing re-raises it.
    """

    def __init__(self, name: str, logger: LoggerLike = None) -> None:
        self._name = name
        self._logger = ensure_structured_logger(logger, fallback_name=name)
        self._tasks: dict[str, set[asyncio.Task]] = {}

    def create(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"{self._name}:{name}")
        self._tasks.setdefault(name, set()).add(task)
        task.add_done_callback(lambda done: self._finished(name, done))
        return task

    def _finished(self, name: str, task: asyncio.Task) -> None:
        group = self._tasks.get(name)
        if group is not None:
            group.discard(task)
            if not group:
                del self._tasks[name]
        if task.cancelled():
            self._logger.debug("%s task %s cancelled", self._name, name)
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("%s task %s failed: %s", self._name, name, exc, exc_info=exc)
        else:
            self._logger.debug("%s task %s completed", self._name, name)

    def is_active(self, name: str) -> bool:
        return any(not task.done() for task in self._tasks.get(name, ()))

    def active_names(self) -> list[str]:
        return sorted(name for name in self._tasks if self.is_active(name))

    async def cancel(self, name: str, *, timeout: float = 5.0) -> bool:
        """Cancel every task registered as ``name``; False if any outlives ``timeout``."""
        return await self._cancel(list(self._tasks.get(name, ())), timeout)

    async def cancel_all(self, *, timeout: float = 5.0) -> bool:
        tasks = [task for group in self._tasks.values() for task in group]
        return await self._cancel(tasks, timeout)

    async def _cancel(self, tasks: list[asyncio.Task], timeout: float) -> bool:
        current = asyncio.current_task()
        pending = [task for task in tasks if not task.done() and task is not current]
        if not pending:
            return True
        for task in pending:
            task.cancel()
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            self._logger.warning(
                "%s: %d task(s) ignored cancellation after %.1fs: %s",
                self._name,
                len(still_running),
                timeout,
                ", ".join(sorted(task.get_name() for task in still_running)),
            )
            return False
        return True


__all__ = ["AsyncTaskManager"]
