"""Typed, non-blocking event channels for downstream consumers.

Publishing only enqueues; a single dispatcher thread delivers payloads to
subscribers in publish order. A failing subscriber is logged and never
affects the publisher or the other subscribers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from queue import Queue
from typing import Any, Generic, TypeVar

from .models import NormalizedMessage, SyncStatus

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]

_STOP = object()


class EventChannel(Generic[T]):
    """A topic carrying a single payload type."""

    def __init__(self, name: str, dispatch: Callable[[Callable[[], None]], None]) -> None:
        self.name = name
        self._dispatch = dispatch
        self._handlers: list[Handler[T]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler[T]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, payload: T) -> None:
        """Queue ``payload`` for delivery without waiting for subscribers."""
        with self._lock:
            handlers = tuple(self._handlers)
        if not handlers:
            return
        self._dispatch(lambda: self._deliver(handlers, payload))

    def _deliver(self, handlers: tuple[Handler[T], ...], payload: T) -> None:
        for handler in handlers:
            try:
                handler(payload)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Subscriber %r failed on channel %s", handler, self.name)


class EventBus:
    """Owns the ``message_received`` and ``status_changed`` channels."""

    def __init__(self) -> None:
        self._queue: Queue[Any] = Queue()
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._closed = False
        self.message_received: EventChannel[NormalizedMessage] = EventChannel(
            "message-received", self._enqueue
        )
        self.status_changed: EventChannel[SyncStatus] = EventChannel(
            "account-status-changed", self._enqueue
        )

    def flush(self) -> None:
        """Block until every queued event has been delivered."""
        self._queue.join()

    def close(self) -> None:
        """Deliver remaining events and stop the dispatcher thread."""
        with self._start_lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join()
        LOGGER.debug("Event dispatcher stopped")

    def _enqueue(self, job: Callable[[], None]) -> None:
        with self._start_lock:
            if self._closed:
                LOGGER.debug("Dropping event published after close")
                return
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="onebox-events", daemon=True
                )
                self._thread.start()
        self._queue.put(job)

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                job()
            finally:
                self._queue.task_done()


__all__ = ["EventBus", "EventChannel"]
