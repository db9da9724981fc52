"""
Common Enums
============
Roles, entity kinds and sensor metrics shared across the client core.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """
    Account role reported by the service at login.

    The wire encodes roles as integers: ``0`` is an administrator, ``1`` a
    standard user.
    """

    STANDARD = "standard"
    ADMIN = "admin"

    @classmethod
    def from_wire(cls, value: int | str) -> "Role":
        if isinstance(value, str) and not value.isdigit():
            return cls(value.lower())
        code = int(value)
        if code == 0:
            return cls.ADMIN
        if code == 1:
            return cls.STANDARD
        raise ValueError(f"Invalid role code: {value!r}")

    def to_wire(self) -> int:
        return 0 if self is Role.ADMIN else 1


class EntityKind(str, Enum):
    """Kinds of entities held by the entity cache."""

    PLANT = "plant"
    PLANT_INDEX = "plant_index"
    READINGS = "readings"
    USER = "user"
    USER_INDEX = "user_index"
    SETTINGS = "settings"


class MetricKind(str, Enum):
    """Sensor metrics reported per plant."""

    SOIL_MOISTURE = "soil-moisture"
    HUMIDITY = "humidity"
    TEMPERATURE = "temperature"


class SessionState(str, Enum):
    """Session manager lifecycle states."""

    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    EXPIRING = "expiring"


class EntryState(str, Enum):
    """Reconciliation state of a cache entry."""

    CLEAN = "clean"
    DIRTY = "dirty"  # holds an optimistic write awaiting the server
    REVERTING = "reverting"


class TabBarPosition(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


class TabBarTheme(str, Enum):
    """Tab bar styles offered in the settings tab."""

    DEFAULT = "default"
    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    PURPLE = "purple"

    @classmethod
    def from_index(cls, index: int) -> "TabBarTheme":
        """Map a settings-picker index to a theme; unknown indices fall back to default."""
        order = [cls.DEFAULT, cls.RED, cls.BLUE, cls.GREEN, cls.PURPLE]
        if 0 <= index < len(order):
            return order[index]
        return cls.DEFAULT
