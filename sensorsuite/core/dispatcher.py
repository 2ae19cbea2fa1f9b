"""Thread-safe completion queue drained on the serialization thread.

Worker threads never touch the session log directly. Instead they enqueue a
zero-argument action here, and the scheduler drains the queue once per tick
so every action runs on the thread that owns the log.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Optional

from .logging_utils import get_module_logger

Action = Callable[[], object]

logger = get_module_logger("Dispatcher")


class CrossThreadDispatcher:
    """FIFO of actions produced on any thread and consumed on one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: deque[Action] = deque()
        self._owner: Optional[int] = None

    def enqueue(self, action: Action) -> None:
        if not callable(action):
            raise TypeError(f"Dispatcher actions must be callable, got {type(action).__name__}")
        with self._lock:
            self._queue.append(action)

    def drain(self) -> int:
        """Run every queued action in FIFO order and return how many ran.

        Actions enqueued while draining are left for the next call.
        """
        current = threading.get_ident()
        with self._lock:
            if self._owner is None:
                self._owner = current
            elif self._owner != current:
                raise RuntimeError("Dispatcher drained from a thread other than its owner")
            if not self._queue:
                return 0
            batch = self._queue
            self._queue = deque()

        executed = 0
        for action in batch:
            executed += 1
            try:
                action()
            except Exception:
                logger.exception("Dispatched action %r failed", action)
        return executed

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def owner_thread(self) -> Optional[int]:
        return self._owner


__all__ = ["Action", "CrossThreadDispatcher"]
