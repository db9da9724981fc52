from enum import Enum


class ClientEvent(str, Enum):
    """Event bus topics published by the client core."""

    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SESSION_EXPIRED = "session_expired"
    SESSION_REFRESHED = "session_refreshed"

    CACHE_ENTRY_CHANGED = "cache_entry_changed"
    CACHE_PURGED = "cache_purged"

    MUTATION_RESOLVED = "mutation_resolved"
    SETTINGS_CHANGED = "settings_changed"
