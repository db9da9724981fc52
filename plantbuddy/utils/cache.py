# plantbuddy/utils/cache.py
"""Entity cache with TTL freshness, background refresh and optimistic writes.

Reads never block on the network: :meth:`EntityCache.get` answers from memory
and, when an entry is missing or stale, hands a refresh to a bounded thread
pool. Only two paths write entries:

* the background refresh path, which may only upgrade ``CLEAN`` entries;
* the mutation coordinator, through :meth:`begin_optimistic`,
  :meth:`confirm`, :meth:`revert` and :meth:`adopt_canonical`.

Every refresh is tracked by a :class:`RefreshHandle`. Eviction, purge and
every coordinator write cancel the handle, and a response arriving for a
cancelled handle is discarded so evicted or superseded state is never
resurrected.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, Iterable, Mapping, Optional, TypeVar

from plantbuddy.domain.models import EntityKey, Plant, UserAccount, merge_readings
from plantbuddy.enums.common import EntityKind, EntryState
from plantbuddy.enums.events import ClientEvent
from plantbuddy.utils.concurrency import synchronized

logger = logging.getLogger(__name__)

T = TypeVar("T")
Loader = Callable[[EntityKey], Any]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached entity plus freshness and reconciliation metadata.

    ``confirmed_value`` is the last server-confirmed value, restored when an
    optimistic write is reverted (``None`` means the entity did not exist).
    """

    key: EntityKey
    value: Optional[T]
    fetched_at: Optional[float]
    ttl: float
    state: EntryState = EntryState.CLEAN
    pending_mutation: Any = None
    confirmed_value: Optional[T] = None
    loading: bool = False

    @classmethod
    def placeholder(cls, key: EntityKey, ttl: float) -> "CacheEntry[T]":
        return cls(key=key, value=None, fetched_at=None, ttl=ttl, loading=True)

    @property
    def dirty(self) -> bool:
        return self.state is EntryState.DIRTY

    @property
    def version(self) -> Optional[int]:
        return getattr(self.value, "metadata_version", getattr(self.value, "version", None))

    def is_expired(self, now: float) -> bool:
        return self.fetched_at is None or (now - self.fetched_at) >= self.ttl


class RefreshHandle:
    """Cancellable handle for one in-flight background fetch."""

    __slots__ = ("key", "epoch", "future", "cancelled")

    def __init__(self, key: EntityKey, epoch: int) -> None:
        self.key = key
        self.epoch = epoch
        self.future: Optional[Future] = None
        self.cancelled = False

    def cancel(self) -> bool:
        """Returns True when the fetch was stopped before it started."""
        self.cancelled = True
        return self.future is not None and self.future.cancel()


def ttl_policy_from_config(config) -> dict[EntityKind, float]:
    """Build the per-kind TTL table from an :class:`~plantbuddy.config.AppConfig`."""
    return {kind: float(config.ttl_for(kind)) for kind in EntityKind}


class EntityCache:
    """Non-blocking cache of plants, readings and user records."""

    def __init__(
        self,
        *,
        ttl_policy: Mapping[EntityKind, float],
        idle_seconds: float = 600.0,
        executor: Executor | None = None,
        max_workers: int = 4,
        event_bus=None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_policy = dict(ttl_policy)
        self.idle_seconds = idle_seconds
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="plantbuddy-refresh"
        )
        self._event_bus = event_bus
        self._clock = clock
        self._loaders: dict[EntityKind, Loader] = {}

        self._entries: dict[EntityKey, CacheEntry] = {}
        self._last_access: dict[EntityKey, float] = {}
        self._inflight: dict[EntityKey, RefreshHandle] = {}
        self._epoch = 0
        self._closed = False
        self._lock = threading.RLock()

        # Metrics tracking
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._discarded = 0
        self._refresh_failures = 0

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def register_loader(self, kind: EntityKind, loader: Loader) -> None:
        """Set the fetch function for an entity kind.

        A loader returns the fresh value, or ``None`` when the entity no
        longer exists on the server.
        """
        self._loaders[kind] = loader

    def ttl_for(self, kind: EntityKind) -> float:
        return self._ttl_policy.get(kind, 60.0)

    @property
    def epoch(self) -> int:
        """Incremented by every purge; coordinator writes carry the epoch they began in."""
        return self._epoch

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, key: EntityKey) -> CacheEntry:
        """Return the entry for ``key`` immediately.

        Missing or stale clean entries schedule a background refresh; the
        caller gets the previous value, or a loading placeholder.
        """
        now = self._clock()
        refresh = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                refresh = True
                result = CacheEntry.placeholder(key, self.ttl_for(key.kind))
            else:
                self._last_access[key] = now
                if entry.state is EntryState.CLEAN and entry.is_expired(now):
                    self._misses += 1
                    refresh = True
                else:
                    self._hits += 1
                result = entry
        if refresh:
            self._schedule_refresh(key)
        return result

    @synchronized
    def peek(self, key: EntityKey) -> Optional[CacheEntry]:
        """Return the stored entry without touching it or scheduling a refresh."""
        return self._entries.get(key)

    @synchronized
    def keys(self, kind: EntityKind | None = None) -> list[EntityKey]:
        return [key for key in self._entries if kind is None or key.kind is kind]

    @synchronized
    def is_refreshing(self, key: EntityKey) -> bool:
        return key in self._inflight

    def refresh(self, key: EntityKey) -> None:
        """Force a background refresh regardless of TTL."""
        self._schedule_refresh(key)

    @synchronized
    def mark_stale(self, key: EntityKey) -> None:
        """Expire a clean entry so the next read refreshes it; the value stays visible."""
        entry = self._entries.get(key)
        if entry is not None and entry.state is EntryState.CLEAN:
            self._entries[key] = replace(entry, fetched_at=None)

    # ------------------------------------------------------------------
    # Background refresh path
    # ------------------------------------------------------------------
    def _schedule_refresh(self, key: EntityKey) -> None:
        loader = self._loaders.get(key.kind)
        if loader is None:
            return
        with self._lock:
            if self._closed or key in self._inflight:
                return
            handle = RefreshHandle(key, self._epoch)
            self._inflight[key] = handle
        try:
            handle.future = self._executor.submit(self._run_refresh, handle, loader)
        except RuntimeError:
            # executor already shut down
            with self._lock:
                if self._inflight.get(key) is handle:
                    del self._inflight[key]
            return
        if handle.cancelled:
            handle.future.cancel()

    def _run_refresh(self, handle: RefreshHandle, loader: Loader) -> None:
        try:
            fetched = loader(handle.key)
        except Exception as exc:
            with self._lock:
                if self._inflight.get(handle.key) is handle:
                    del self._inflight[handle.key]
                self._refresh_failures += 1
            logger.warning("Background refresh of %s failed: %s", handle.key, exc)
            return
        self._apply_refresh(handle, fetched)

    def _apply_refresh(self, handle: RefreshHandle, fetched: Any) -> None:
        key = handle.key
        now = self._clock()
        with self._lock:
            if handle.cancelled or handle.epoch != self._epoch or self._inflight.get(key) is not handle:
                self._discarded += 1
                logger.debug("Discarding late refresh for %s", key)
                return
            del self._inflight[key]
            current = self._entries.get(key)
            if current is not None and current.state is not EntryState.CLEAN:
                # Unconfirmed local write wins until the coordinator resolves it
                logger.debug("Refresh for %s skipped, entry is %s", key, current.state.value)
                return
            if fetched is None:
                if current is None:
                    return
                del self._entries[key]
                self._last_access.pop(key, None)
                changed: Optional[CacheEntry] = None
            else:
                value = self._reconcile(key, current.value if current else None, fetched)
                changed = CacheEntry(key=key, value=value, fetched_at=now, ttl=self.ttl_for(key.kind))
                self._entries[key] = changed
                self._last_access.setdefault(key, now)
                if current is not None and current.value == value:
                    return
        self._notify(key, changed)

    @staticmethod
    def _reconcile(key: EntityKey, current: Any, fetched: Any) -> Any:
        if key.kind is EntityKind.READINGS:
            return merge_readings(current, fetched)
        if isinstance(current, Plant) and isinstance(fetched, Plant):
            # Only a strictly newer server version replaces cached metadata
            return fetched if fetched.is_newer_than(current) else current
        if isinstance(current, UserAccount) and isinstance(fetched, UserAccount):
            return current if fetched.is_older_than(current) else fetched
        return fetched

    def _cancel_refresh(self, key: EntityKey) -> None:
        """Drop the pending refresh for ``key``. Caller holds the lock."""
        handle = self._inflight.pop(key, None)
        if handle is not None and handle.cancel():
            # Never reaches _apply_refresh, so count it here
            self._discarded += 1

    # ------------------------------------------------------------------
    # Mutation coordinator path
    # ------------------------------------------------------------------
    def begin_optimistic(self, key: EntityKey, mutation: Any, apply: Callable[[Any], Any]) -> int:
        """Mark ``key`` dirty and show ``apply(confirmed_value)`` to readers.

        Returns the cache epoch the write began in. A refresh already in
        flight for ``key`` is cancelled; its response predates the write.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.state is not EntryState.CLEAN:
                raise RuntimeError(f"{key} already has a pending mutation")
            self._cancel_refresh(key)
            confirmed = entry.value if entry is not None else None
            dirty = CacheEntry(
                key=key,
                value=apply(confirmed),
                fetched_at=entry.fetched_at if entry is not None else None,
                ttl=self.ttl_for(key.kind),
                state=EntryState.DIRTY,
                pending_mutation=mutation,
                confirmed_value=confirmed,
            )
            self._entries[key] = dirty
            self._last_access[key] = now
            epoch = self._epoch
        self._notify(key, dirty)
        return epoch

    def confirm(self, key: EntityKey, epoch: int, server_value: Any, *, new_key: EntityKey | None = None) -> None:
        """Adopt the server's value for a dirty entry and mark it clean.

        ``server_value=None`` removes the entry (confirmed delete). ``new_key``
        moves a created entity from its temporary key to its server id.
        """
        now = self._clock()
        target = new_key or key
        with self._lock:
            if epoch != self._epoch:
                logger.debug("Dropping confirmation for %s from a purged epoch", key)
                return
            entry = self._entries.get(key)
            if entry is None or entry.state is not EntryState.DIRTY:
                return
            self._cancel_refresh(key)
            self._cancel_refresh(target)
            if new_key is not None and new_key != key:
                del self._entries[key]
                self._last_access.pop(key, None)
            if server_value is None:
                self._entries.pop(target, None)
                self._last_access.pop(target, None)
                result: Optional[CacheEntry] = None
            else:
                result = CacheEntry(key=target, value=server_value, fetched_at=now, ttl=self.ttl_for(target.kind))
                self._entries[target] = result
                self._last_access[target] = now
        if new_key is not None and new_key != key:
            self._notify(key, None)
        self._notify(target, result)

    def revert(self, key: EntityKey, epoch: int) -> None:
        """Discard an optimistic write and restore the last confirmed value."""
        with self._lock:
            if epoch != self._epoch:
                return
            entry = self._entries.get(key)
            if entry is None or entry.state is not EntryState.DIRTY:
                return
            reverting = replace(entry, state=EntryState.REVERTING)
            self._entries[key] = reverting
        self._notify(key, reverting)

        with self._lock:
            if epoch != self._epoch or self._entries.get(key) is not reverting:
                return
            if entry.confirmed_value is None:
                del self._entries[key]
                self._last_access.pop(key, None)
                restored: Optional[CacheEntry] = None
            else:
                restored = CacheEntry(
                    key=key,
                    value=entry.confirmed_value,
                    fetched_at=entry.fetched_at,
                    ttl=entry.ttl,
                )
                self._entries[key] = restored
        self._notify(key, restored)

    def adopt_canonical(self, key: EntityKey, epoch: int, value: Any) -> None:
        """Replace a clean entry with the server's canonical value (conflict path)."""
        now = self._clock()
        with self._lock:
            if epoch != self._epoch:
                return
            entry = self._entries.get(key)
            if entry is not None and entry.state is not EntryState.CLEAN:
                return
            self._cancel_refresh(key)
            if value is None:
                self._entries.pop(key, None)
                self._last_access.pop(key, None)
                adopted: Optional[CacheEntry] = None
            else:
                adopted = CacheEntry(key=key, value=value, fetched_at=now, ttl=self.ttl_for(key.kind))
                self._entries[key] = adopted
                self._last_access[key] = now
        self._notify(key, adopted)

    def patch_index(self, key: EntityKey, *, add: Iterable[str] = (), remove: Iterable[str] = ()) -> None:
        """Add or remove ids in a cached clean index after a confirmed create/delete."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.state is not EntryState.CLEAN:
                return
            removed = {str(item) for item in remove}
            ids = [item for item in entry.value if str(item) not in removed]
            for item in add:
                if str(item) not in {str(i) for i in ids}:
                    ids.append(item)
            patched = replace(entry, value=tuple(ids))
            self._entries[key] = patched
        self._notify(key, patched)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------
    def evict_idle(self, now: float | None = None) -> int:
        """Drop clean entries not read within the idle window. Returns the count."""
        now = self._clock() if now is None else now
        evicted: list[EntityKey] = []
        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.state is not EntryState.CLEAN:
                    continue
                if now - self._last_access.get(key, now) >= self.idle_seconds:
                    del self._entries[key]
                    self._last_access.pop(key, None)
                    self._cancel_refresh(key)
                    evicted.append(key)
            self._evictions += len(evicted)
        if evicted:
            logger.debug("Evicted %d idle cache entries", len(evicted))
        return len(evicted)

    def purge(self) -> int:
        """Drop every entry and cancel every pending refresh (logout, expiry)."""
        with self._lock:
            self._epoch += 1
            count = len(self._entries)
            handles = list(self._inflight.values())
            self._inflight.clear()
            self._entries.clear()
            self._last_access.clear()
        for handle in handles:
            handle.cancel()
        logger.info("Entity cache purged (%d entries, %d pending refreshes cancelled)", count, len(handles))
        if self._event_bus is not None:
            self._event_bus.publish(ClientEvent.CACHE_PURGED, {"entries": count})
        return count

    def close(self) -> None:
        with self._lock:
            self._closed = True
            handles = list(self._inflight.values())
            self._inflight.clear()
        for handle in handles:
            handle.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Notifications & metrics
    # ------------------------------------------------------------------
    def _notify(self, key: EntityKey, entry: Optional[CacheEntry]) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(
            ClientEvent.CACHE_ENTRY_CHANGED,
            {
                "kind": key.kind.value,
                "id": key.id,
                "state": entry.state.value if entry is not None else None,
                "version": entry.version if entry is not None else None,
                "removed": entry is None,
            },
        )

    def stats(self) -> dict[str, Any]:
        """
        Cache statistics for diagnostics.

        Returns:
            Dictionary with size, dirty count, in-flight refreshes, hits,
            misses, hit rate, evictions, discarded late responses and failed
            refreshes.
        """
        with self._lock:
            size = len(self._entries)
            dirty = sum(1 for entry in self._entries.values() if entry.state is not EntryState.CLEAN)
            inflight = len(self._inflight)
            hits, misses = self._hits, self._misses

        total_requests = hits + misses
        hit_rate = (hits / total_requests * 100) if total_requests > 0 else 0.0
        return {
            "size": size,
            "dirty": dirty,
            "inflight": inflight,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hit_rate, 2),
            "evictions": self._evictions,
            "discarded": self._discarded,
            "refresh_failures": self._refresh_failures,
            "epoch": self._epoch,
        }
