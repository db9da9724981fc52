"""
Lightweight EventBus owned by a client container.

Key invariants (enforced by call sites + tests):
  - Event topics come from ``plantbuddy.enums.events.ClientEvent``.
  - Subscribers always receive a plain dict payload (dataclasses and
    Pydantic models are dumped before delivery).
  - ``publish`` hands work to a small worker pool and never blocks the
    caller; ``publish_sync`` delivers inline, for notifications that must
    be observed before the publisher returns.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict, is_dataclass
from enum import Enum
from queue import Full, Queue
from typing import Any, Callable, Dict, Hashable

from pydantic import BaseModel

from plantbuddy.enums.events import ClientEvent

logger = logging.getLogger(__name__)

_DROP_WARNING_INTERVAL_SECONDS = 60
_STOP = object()


class EventBus:
    """Handles event-driven notifications between the core and the UI shell."""

    def __init__(self, queue_size: int = 256, worker_count: int = 1) -> None:
        self.subscribers: Dict[Hashable, list[Callable[[Any], None]]] = defaultdict(list)
        self.lock = threading.Lock()
        self._queue_size = max(1, queue_size)
        self._queue: Queue = Queue(maxsize=self._queue_size)
        self._worker_count = max(1, worker_count)
        self._workers: list[threading.Thread] = []
        self._dropped_events = 0
        self._last_drop_warning_time = 0.0
        self._closed = False

    def _ensure_workers(self) -> None:
        with self.lock:
            if self._workers or self._closed:
                return
            for index in range(self._worker_count):
                worker = threading.Thread(target=self._worker_loop, daemon=True, name=f"EventBus-{index}")
                worker.start()
                self._workers.append(worker)
            logger.debug("EventBus workers started (pool=%s queue=%s)", self._worker_count, self._queue_size)

    def subscribe(self, event_name: ClientEvent | str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """
        Subscribes a callback to an event.

        Returns:
            A function that removes the subscription.
        """
        name = event_name.value if isinstance(event_name, Enum) else event_name
        with self.lock:
            self.subscribers[name].append(callback)

        def unsubscribe() -> None:
            with self.lock:
                callbacks = self.subscribers.get(name, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                event_name, callback, payload = item
                self._deliver(event_name, callback, payload)
            finally:
                self._queue.task_done()

    @staticmethod
    def _deliver(event_name: str, callback: Callable[[Any], None], payload: Any) -> None:
        try:
            callback(payload)
        except Exception as exc:
            logger.error("Error in callback for event %s: %s", event_name, exc, exc_info=True)

    @staticmethod
    def _normalize(data: Any) -> Any:
        if isinstance(data, BaseModel):
            return data.model_dump()
        if is_dataclass(data) and not isinstance(data, type):
            return asdict(data)
        return data

    def _callbacks_for(self, name: str) -> list[Callable[[Any], None]]:
        with self.lock:
            return list(self.subscribers.get(name, []))

    def publish(self, event_name: ClientEvent | str, data: Any | None = None) -> None:
        """Queue an event for asynchronous delivery to every subscriber."""
        name = event_name.value if isinstance(event_name, Enum) else event_name
        callbacks = self._callbacks_for(name)
        if not callbacks:
            return
        self._ensure_workers()
        payload = self._normalize(data)
        for callback in callbacks:
            try:
                self._queue.put_nowait((name, callback, payload))
            except Full:
                self._record_drop(name)
                break

    def publish_sync(self, event_name: ClientEvent | str, data: Any | None = None) -> None:
        """Deliver an event inline on the caller's thread."""
        name = event_name.value if isinstance(event_name, Enum) else event_name
        payload = self._normalize(data)
        for callback in self._callbacks_for(name):
            self._deliver(name, callback, payload)

    def _record_drop(self, event_name: str) -> None:
        self._dropped_events += 1
        now = time.time()
        if now - self._last_drop_warning_time >= _DROP_WARNING_INTERVAL_SECONDS:
            logger.warning(
                "EventBus dropping events! queue_size=%d total_dropped=%d last=%s",
                self._queue_size,
                self._dropped_events,
                event_name,
            )
            self._last_drop_warning_time = now

    def drain(self, timeout: float = 1.0) -> bool:
        """Wait until queued events were delivered. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def close(self) -> None:
        """Stop the worker threads after the queue drains."""
        with self.lock:
            if self._closed:
                return
            self._closed = True
            workers = list(self._workers)
        for _ in workers:
            self._queue.put(_STOP)
        for worker in workers:
            worker.join(timeout=2.0)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "queue_depth": self._queue.qsize(),
            "queue_size": self._queue_size,
            "dropped_events": self._dropped_events,
            "subscribers": sum(len(values) for values in self.subscribers.values()),
        }
