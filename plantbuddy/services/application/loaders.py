"""
Cache loaders
=============
Background fetch functions registered with the entity cache, one per
entity kind. Each runs on the cache's refresh pool with the current
session token; a token refused by the server ends the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable

from plantbuddy.domain.exceptions import ServerError
from plantbuddy.domain.models import EntityKey
from plantbuddy.enums.common import EntityKind
from plantbuddy.utils.time import utc_now

if TYPE_CHECKING:
    from infrastructure.api.plant_api import PlantServiceApi
    from plantbuddy.services.protocols import SessionProvider
    from plantbuddy.utils.cache import EntityCache

logger = logging.getLogger(__name__)


@dataclass
class CacheLoaders:
    """Binds the remote API and the session to the cache's refresh path."""

    api: "PlantServiceApi"
    sessions: "SessionProvider"
    cache: "EntityCache"
    readings_lookback_hours: int = 168
    clock: Callable = utc_now

    def register(self) -> None:
        self.cache.register_loader(EntityKind.PLANT_INDEX, self.load_plant_index)
        self.cache.register_loader(EntityKind.PLANT, self.load_plant)
        self.cache.register_loader(EntityKind.READINGS, self.load_readings)
        self.cache.register_loader(EntityKind.USER_INDEX, self.load_user_index)
        self.cache.register_loader(EntityKind.USER, self.load_user)

    def _call(self, fetch: Callable[[str], Any]) -> Any:
        token = self.sessions.require_session().token
        try:
            return fetch(token)
        except ServerError as e:
            if e.is_unauthorized:
                self.sessions.invalidate("token_rejected")
            raise

    def load_plant_index(self, key: EntityKey) -> tuple[str, ...]:
        return self._call(self.api.list_plant_ids)

    def load_plant(self, key: EntityKey):
        return self._call(lambda token: self.api.get_plant(token, key.id))

    def load_readings(self, key: EntityKey):
        """Fetch only samples newer than the cached series (or the lookback window)."""
        plant_id, metric = key.split_readings_id()
        end = self.clock()
        start = end - timedelta(hours=self.readings_lookback_hours)
        entry = self.cache.peek(key)
        if entry is not None and entry.value:
            start = max(start, entry.value[-1].timestamp)
        return self._call(lambda token: self.api.get_readings(token, plant_id, metric, start, end))

    def load_user_index(self, key: EntityKey) -> tuple[str, ...]:
        return self._call(self.api.list_user_ids)

    def load_user(self, key: EntityKey):
        return self._call(lambda token: self.api.get_user(token, key.id))
