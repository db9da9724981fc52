from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from plantbuddy.domain.exceptions import PolicyDeniedError
from plantbuddy.domain.models import EntityKey
from plantbuddy.enums.common import MetricKind
from plantbuddy.security.access_policy import Operation, allowed_operations, is_allowed, may_view_plant
from plantbuddy.utils.cache import CacheEntry

if TYPE_CHECKING:
    from plantbuddy.services.protocols import SessionProvider
    from plantbuddy.utils.cache import EntityCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Listing:
    """Entries of an index, plus whether the index itself is still loading."""

    entries: tuple[CacheEntry, ...]
    loading: bool = False


@dataclass
class PlantViewService:
    """
    Read-only facade the presentation shell draws from.

    Every method answers from the entity cache without waiting on the
    network; entries that are not loaded yet come back as placeholders.
    """

    cache: "EntityCache"
    sessions: "SessionProvider"

    def visible_operations(self) -> frozenset[Operation]:
        return allowed_operations(self.sessions.current_role())

    def list_plants(self) -> Listing:
        """Plants visible to the current user. Standard users see only their own."""
        session = self.sessions.require_session()
        index = self.cache.get(EntityKey.plant_index())
        if index.value is None:
            return Listing(entries=(), loading=True)

        entries = []
        pending = False
        for plant_id in index.value:
            entry = self.cache.get(EntityKey.plant(plant_id))
            if entry.value is None:
                # Ownership is unknown until the plant arrives
                pending = pending or entry.loading
                if entry.loading and session.is_admin:
                    entries.append(entry)
            elif may_view_plant(session.role, session.user_id, entry.value.owner_id):
                entries.append(entry)
        return Listing(entries=tuple(entries), loading=index.loading or pending)

    def plant(self, plant_id) -> CacheEntry:
        session = self.sessions.require_session()
        entry = self.cache.get(EntityKey.plant(plant_id))
        if entry.value is not None and not may_view_plant(session.role, session.user_id, entry.value.owner_id):
            raise PolicyDeniedError(
                "Plant belongs to another user", detail={"operation": Operation.VIEW_ANY_PLANT.value}
            )
        return entry

    def readings(self, plant_id, metric: MetricKind | str) -> CacheEntry:
        """Sensor series for one plant and metric. Viewing requires access to the plant."""
        self.plant(plant_id)
        return self.cache.get(EntityKey.readings(plant_id, MetricKind(metric)))

    def users(self) -> Listing:
        session = self.sessions.require_session()
        if not is_allowed(session.role, Operation.MANAGE_USERS):
            raise PolicyDeniedError(
                "Only administrators can view users", detail={"operation": Operation.MANAGE_USERS.value}
            )
        index = self.cache.get(EntityKey.user_index())
        if index.value is None:
            return Listing(entries=(), loading=True)
        entries = tuple(self.cache.get(EntityKey.user(user_id)) for user_id in index.value)
        return Listing(entries=entries, loading=index.loading)
