"""Fire-and-forget task helper."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task[Any]:
    """Schedule ``coro`` and log its exception, if any, when it finishes.

    The event loop keeps only weak references to tasks, so the task is
    pinned in ``_background_tasks`` until it is done.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")
    task = asyncio.get_running_loop().create_task(coro, name=context)
    _background_tasks.add(task)

    def _on_done(done: asyncio.Task[Any]) -> None:
        _background_tasks.discard(done)
        if done.cancelled():
            return
        exc = done.exception()
        if exc is not None:
            task_logger.error("Background task %s failed: %s", context or done.get_name(), exc, exc_info=exc)

    task.add_done_callback(_on_done)
    return task


_background_tasks: set[asyncio.Task[Any]] = set()


__all__ = ["create_logged_task"]
