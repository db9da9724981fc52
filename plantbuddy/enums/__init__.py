from .common import EntityKind, EntryState, MetricKind, Role, SessionState, TabBarPosition, TabBarTheme
from .events import ClientEvent

__all__ = [
    "ClientEvent",
    "EntityKind",
    "EntryState",
    "MetricKind",
    "Role",
    "SessionState",
    "TabBarPosition",
    "TabBarTheme",
]
