"""Small persistent JSON store for local user preferences.

Each store is one JSON file under the client's data directory. Writes go to
a temporary file that atomically replaces the original, guarded by an
advisory lock file so two client windows do not interleave writes.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)


class FileLock:
    """Simple file-lock using a lockfile (cross-platform, advisory).

    Uses atomic creation of a ``.lock`` file and retries until timeout.
    """

    def __init__(self, lock_path: str, timeout: float = 5.0, retry: float = 0.05) -> None:
        self.lock_path = lock_path
        self.timeout = float(timeout)
        self.retry = float(retry)
        self._acquired = False

    def acquire(self) -> bool:
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                self._acquired = True
                return True
            except FileExistsError:
                if (time.monotonic() - start) >= self.timeout:
                    return False
                time.sleep(self.retry)

    def release(self) -> None:
        try:
            if self._acquired and os.path.exists(self.lock_path):
                os.unlink(self.lock_path)
        finally:
            self._acquired = False

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Failed to acquire file lock: {self.lock_path}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class JsonStore:
    """Key/value document persisted as a single JSON file."""

    def __init__(self, base_dir: str, name: str) -> None:
        self.base_dir = base_dir
        self.path = os.path.join(base_dir, name)
        self._lock_path = self.path + ".lock"

    def load(self) -> Dict[str, Any]:
        """Return the stored document, or ``{}`` when missing or unreadable."""
        if not os.path.exists(self.path):
            return {}
        try:
            with FileLock(self._lock_path):
                with open(self.path, "r", encoding="utf-8") as fh:
                    data = json.load(fh)
        except (OSError, TimeoutError, json.JSONDecodeError) as e:
            logger.warning("Failed to load JSON store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: Dict[str, Any]) -> None:
        os.makedirs(self.base_dir, exist_ok=True)
        with FileLock(self._lock_path):
            tmp = self.path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
