"""
Background maintenance loop.

One daemon thread periodically runs the housekeeping the client needs while
the UI is idle:

- ``SessionManager.check_expiry()``: expire or refresh the session token;
- ``EntityCache.evict_idle()``: drop entries nobody looked at recently.

Each task runs in isolation; a failing task is logged and the loop goes on.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceTask:
    name: str
    func: Callable[[], object]
    runs: int = 0
    failures: int = 0
    last_error: str | None = None


@dataclass
class MaintenanceWorker:
    """Runs registered tasks every ``interval`` seconds until stopped."""

    interval: float = 5.0
    tasks: list[MaintenanceTask] = field(default_factory=list)
    _stop_event: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: threading.Thread | None = field(default=None, init=False, repr=False)

    def add_task(self, name: str, func: Callable[[], object]) -> None:
        self.tasks.append(MaintenanceTask(name=name, func=func))

    def run_once(self) -> None:
        """Run every task once on the calling thread."""
        for task in self.tasks:
            try:
                task.func()
                task.runs += 1
            except Exception as e:
                task.failures += 1
                task.last_error = str(e)
                logger.error("Maintenance task '%s' failed: %s", task.name, e, exc_info=True)

    def start(self) -> None:
        """Start the maintenance thread."""
        if self.is_running():
            logger.warning("Maintenance worker already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="PlantBuddyMaintenance")
        self._thread.start()
        logger.info("Maintenance worker started (interval=%.1fs, tasks=%d)", self.interval, len(self.tasks))

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        if wait:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Maintenance worker stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        logger.debug("Maintenance loop started")
        while not self._stop_event.wait(self.interval):
            self.run_once()
        logger.debug("Maintenance loop ended")

    def get_status(self) -> dict:
        return {
            "running": self.is_running(),
            "interval": self.interval,
            "tasks": {
                task.name: {"runs": task.runs, "failures": task.failures, "last_error": task.last_error}
                for task in self.tasks
            },
        }
