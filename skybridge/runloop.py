"""A single worker thread that runs queued tasks one after another."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any, Optional

__all__ = ["RunLoop", "DEFAULT_QUEUE_SIZE"]

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 10
_STOP = object()


class RunLoop:
    """Runs callables in submission order on a background thread."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> RunLoop:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        """Whether the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def run(self, task: Callable[..., object], *args: Any) -> None:
        """Queue ``task(*args)``, waiting while the queue is full."""
        if not callable(task):
            raise TypeError(f"task is not callable: {task!r}")
        self._queue.put((task, args))

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            task, args = item
            try:
                task(*args)
            except Exception:
                logger.exception("runloop task failed")

    def start(self) -> None:
        """Start the worker thread if it is not already running."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._loop, name="runloop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Run the tasks already queued, then stop the worker thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None