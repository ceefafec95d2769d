from __future__ import annotations

import threading
from typing import Callable

from loguru import logger

from ..models import CompletionEvent

TaskEndListener = Callable[[CompletionEvent], None]


class Subscription:
    """Handle returned by `TaskEventStream.on_task_process_end`."""

    def __init__(self, stream: "TaskEventStream", token: int) -> None:
        self._stream = stream
        self._token = token
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._stream._remove(self._token)


class TaskEventStream:
    """Broadcast task process-end events to every subscribed listener.

    Events may be fired from worker threads. Listeners are snapshotted before
    delivery, so a listener can dispose its own subscription while running.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, TaskEndListener] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def on_task_process_end(self, listener: TaskEndListener) -> Subscription:
        with self._lock:
            self._counter += 1
            token = self._counter
            self._listeners[token] = listener
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def fire(self, event: CompletionEvent) -> None:
        with self._lock:
            listeners = [(token, listener) for token, listener in self._listeners.items()]
        for token, listener in listeners:
            with self._lock:
                if token not in self._listeners:
                    continue
            try:
                listener(event)
            except Exception:
                logger.exception("Task end listener failed for task {!r}", event.task.name)
