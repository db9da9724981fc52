"""
Shared test fixtures for the PlantBuddy client core test suite.

Provides:
- A fake transport that records every request and replays scripted replies
- Manual monotonic and wall clocks
- Inline and deferred executors for the cache's refresh pool
- Session, cache and coordinator instances wired together
- Helpers for building wire payloads

Usage:
    def test_example(fake_transport, sessions, login_as):
        login_as("alice")
        assert sessions.current_role() is Role.STANDARD
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from infrastructure.api.plant_api import PlantServiceApi
from infrastructure.api.transport import Request, Response
from plantbuddy.domain.models import EntityKey
from plantbuddy.enums.common import EntityKind
from plantbuddy.services.application.loaders import CacheLoaders
from plantbuddy.services.application.mutation_service import MutationCoordinator
from plantbuddy.services.application.session_service import SessionManager
from plantbuddy.services.application.settings_service import SettingsService
from plantbuddy.utils.cache import EntityCache
from plantbuddy.utils.persistent_store import JsonStore

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("plantbuddy").setLevel(logging.WARNING)


# ========================== Test doubles ===================================


class FakeTransport:
    """Records requests; replies come from per-route scripts.

    A script is a list of results consumed in order (the last one repeats).
    A result is a payload, a ``Response``, an exception to raise, or a
    callable taking the request and returning any of those.
    """

    def __init__(self) -> None:
        self.calls: list[Request] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def route(self, method: str, path: str, *results: Any) -> None:
        self._routes[(method.upper(), path)] = list(results)

    def send(self, request: Request, *, timeout: float | None = None) -> Response:
        self.calls.append(request)
        script = self._routes.get((request.method.upper(), request.path))
        if not script:
            raise AssertionError(f"Unexpected request {request.method} {request.path}")
        result = script.pop(0) if len(script) > 1 else script[0]
        if callable(result) and not isinstance(result, (Response, Exception)):
            result = result(request)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, Response):
            return result
        return Response(status=200, payload=result)

    def calls_to(self, method: str, path: str) -> list[Request]:
        return [c for c in self.calls if c.method.upper() == method.upper() and c.path == path]

    def close(self) -> None:
        pass


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    """UTC wall clock advanced by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn: Callable, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # pragma: no cover - surfaced through the future
            future.set_exception(exc)
        return future


class DeferredExecutor(Executor):
    """Queues submitted work until the test calls :meth:`run_all`."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future, Callable, tuple, dict]] = []

    def submit(self, fn: Callable, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> int:
        ran = 0
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)
            ran += 1
        return ran


# ========================== Payload helpers ================================


def plant_payload(plant_id: Any = "7", *, version: int = 1, owner_id: int | None = 1, name: str = "Basil", **extra):
    payload = {
        "id": plant_id,
        "name": name,
        "species": "Ocimum basilicum",
        "location": "Kitchen",
        "owner_id": owner_id,
        "version": version,
    }
    payload.update(extra)
    return payload


def login_payload(user_id: int = 1, name: str = "alice", role: int = 1, token: str | None = None, expires_in=3600):
    return {"id": user_id, "name": name, "role": role, "token": token or f"tok-{name}", "expires_in": expires_in}


TTL_POLICY = {
    EntityKind.PLANT: 60.0,
    EntityKind.PLANT_INDEX: 60.0,
    EntityKind.READINGS: 15.0,
    EntityKind.USER: 300.0,
    EntityKind.USER_INDEX: 300.0,
}


# ========================== Fixtures =======================================


@pytest.fixture()
def fake_transport():
    return FakeTransport()


@pytest.fixture()
def api(fake_transport):
    return PlantServiceApi(fake_transport)


@pytest.fixture()
def clock():
    return ManualClock()


@pytest.fixture()
def wall_clock():
    return WallClock()


@pytest.fixture()
def event_bus():
    """Recording stand-in for the event bus."""
    return MagicMock()


@pytest.fixture()
def audit_logger():
    return MagicMock()


@pytest.fixture()
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture()
def cache(clock, event_bus):
    """Entity cache whose background refreshes run inline."""
    entity_cache = EntityCache(
        ttl_policy=TTL_POLICY,
        idle_seconds=600,
        executor=InlineExecutor(),
        event_bus=event_bus,
        clock=clock,
    )
    yield entity_cache
    entity_cache.close()


@pytest.fixture()
def sessions(api, cache, event_bus, audit_logger, wall_clock):
    return SessionManager(
        api,
        cache,
        event_bus=event_bus,
        audit_logger=audit_logger,
        refresh_margin_seconds=60,
        clock=wall_clock,
    )


@pytest.fixture()
def login_as(fake_transport, sessions):
    """Log in as a standard user ("alice", id 1) or as admin ("admin", id 99)."""

    def _login(name: str = "alice", *, expires_in: int = 3600):
        if name == "admin":
            payload = login_payload(user_id=99, name="admin", role=0, expires_in=expires_in)
        else:
            payload = login_payload(user_id=1, name=name, role=1, expires_in=expires_in)
        fake_transport.route("POST", "user/login", payload)
        return sessions.login(name, "secret")

    return _login


@pytest.fixture()
def settings_service(tmp_path):
    return SettingsService(JsonStore(str(tmp_path), "settings.json"))


@pytest.fixture()
def coordinator(api, cache, sessions, settings_service, event_bus, audit_logger):
    mutation_coordinator = MutationCoordinator(
        api,
        cache,
        sessions,
        settings=settings_service,
        event_bus=event_bus,
        audit_logger=audit_logger,
        max_workers=4,
    )
    yield mutation_coordinator
    mutation_coordinator.close()


@pytest.fixture()
def make_plant():
    """Builder for plant wire payloads."""
    return plant_payload


@pytest.fixture()
def make_login():
    """Builder for login wire payloads."""
    return login_payload


@pytest.fixture()
def loaders(api, sessions, cache, wall_clock):
    """Register the real cache loaders (requests go to ``fake_transport``)."""
    cache_loaders = CacheLoaders(api, sessions, cache, readings_lookback_hours=24, clock=wall_clock)
    cache_loaders.register()
    return cache_loaders


@pytest.fixture()
def seed_plant(fake_transport, cache, loaders):
    """Load a plant into the cache through the normal refresh path."""

    def _seed(plant_id: Any = "7", **kwargs):
        fake_transport.route("GET", f"plant/{plant_id}", plant_payload(plant_id, **kwargs))
        key = EntityKey.plant(plant_id)
        cache.get(key)
        entry = cache.peek(key)
        assert entry is not None and entry.value is not None
        return entry.value

    return _seed
