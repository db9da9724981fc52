"""
Concurrency utilities.

``synchronized`` serializes a method on the instance's ``_lock``. Components
that call their own synchronized methods re-entrantly must use an ``RLock``.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, TypeVar

F = TypeVar("F", bound=Callable)


def synchronized(func: F) -> F:
    """Decorator that holds ``self._lock`` for the duration of the call.

    Instances without a ``_lock`` attribute run the method unlocked.
    """

    @wraps(func)
    def _wrapped(self, *args, **kwargs):
        lock = getattr(self, "_lock", None)
        if lock is None:
            return func(self, *args, **kwargs)
        with lock:
            return func(self, *args, **kwargs)

    return _wrapped  # type: ignore[return-value]
