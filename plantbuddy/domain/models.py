"""
Client Domain Entities
======================
Immutable value objects for the entities the client caches: plants, sensor
readings, user accounts and the login session.

Updates never mutate in place; they return a copy via ``dataclasses.replace``
so cache entries can be swapped atomically.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from plantbuddy.domain.exceptions import ValidationError
from plantbuddy.enums.common import EntityKind, MetricKind, Role

PLANT_EDITABLE_FIELDS = frozenset(
    {"name", "species", "location", "description", "group_id", "care_tips", "owner_id"}
)


@dataclass(frozen=True)
class EntityKey:
    """Unique cache key: one entity is never stored under two keys."""

    kind: EntityKind
    id: str

    @classmethod
    def plant(cls, plant_id: Any) -> "EntityKey":
        return cls(EntityKind.PLANT, str(plant_id))

    @classmethod
    def user(cls, user_id: Any) -> "EntityKey":
        return cls(EntityKind.USER, str(user_id))

    @classmethod
    def readings(cls, plant_id: Any, metric: MetricKind) -> "EntityKey":
        return cls(EntityKind.READINGS, f"{plant_id}:{MetricKind(metric).value}")

    @classmethod
    def plant_index(cls) -> "EntityKey":
        return cls(EntityKind.PLANT_INDEX, "all")

    @classmethod
    def user_index(cls) -> "EntityKey":
        return cls(EntityKind.USER_INDEX, "all")

    def split_readings_id(self) -> tuple[str, MetricKind]:
        plant_id, _, metric = self.id.rpartition(":")
        return plant_id, MetricKind(metric)

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.id}"


@dataclass(frozen=True)
class Plant:
    """Plant metadata as known to the client."""

    id: str
    name: str
    species: str = ""
    location: str = ""
    owner_id: int | None = None
    last_reading_summary: Mapping[str, float] = field(default_factory=dict)
    metadata_version: int = 0

    # Optional descriptive fields
    description: str = ""
    group_id: str | None = None
    care_tips: tuple[str, ...] = ()

    def apply_changes(self, changes: Mapping[str, Any]) -> "Plant":
        """Return a copy with ``changes`` applied. Only metadata fields are editable."""
        unknown = set(changes) - PLANT_EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {sorted(unknown)}", detail={"fields": sorted(unknown)})
        updates = dict(changes)
        if "care_tips" in updates:
            updates["care_tips"] = tuple(updates["care_tips"] or ())
        return replace(self, **updates)

    def is_newer_than(self, other: "Plant | None") -> bool:
        return other is None or self.metadata_version > other.metadata_version

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_reading_summary"] = dict(self.last_reading_summary)
        data["care_tips"] = list(self.care_tips)
        return data


@dataclass(frozen=True)
class SensorReading:
    """A single sensor sample. Readings are never edited by the client."""

    plant_id: str
    timestamp: datetime
    metric_kind: MetricKind
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "plant_id": self.plant_id,
            "timestamp": self.timestamp.isoformat(),
            "metric_kind": self.metric_kind.value,
            "value": self.value,
        }


def merge_readings(
    existing: Iterable[SensorReading] | None, fetched: Iterable[SensorReading]
) -> tuple[SensorReading, ...]:
    """Append newly fetched readings to a series, ordered by timestamp.

    Samples already present (same timestamp and metric) keep their cached
    value; the series only ever grows.
    """
    merged: dict[tuple[datetime, MetricKind], SensorReading] = {}
    for reading in existing or ():
        merged[(reading.timestamp, reading.metric_kind)] = reading
    for reading in fetched:
        merged.setdefault((reading.timestamp, reading.metric_kind), reading)
    return tuple(sorted(merged.values(), key=lambda r: r.timestamp))


@dataclass(frozen=True)
class UserAccount:
    """User record. Only visible under an admin session."""

    id: int
    display_name: str
    role: Role = Role.STANDARD
    # Opaque reference to the stored credential; the client never sees the secret.
    credentials_ref: str | None = None
    version: int = 0

    def is_older_than(self, other: "UserAccount | None") -> bool:
        # Unversioned records all carry 0, so equal versions still replace
        return other is not None and self.version < other.version

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": self.role.value,
            "credentials_ref": self.credentials_ref,
            "version": self.version,
        }


@dataclass(frozen=True)
class Session:
    """An authenticated session. Owned exclusively by the session manager."""

    user_id: int
    username: str
    role: Role
    token: str = field(repr=False)
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def seconds_left(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
