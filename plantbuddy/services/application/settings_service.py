from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from plantbuddy.domain.exceptions import ValidationError
from plantbuddy.enums.common import TabBarPosition, TabBarTheme
from plantbuddy.enums.events import ClientEvent
from plantbuddy.utils.persistent_store import JsonStore

if TYPE_CHECKING:
    from plantbuddy.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, str] = {
    "tab_bar_position": TabBarPosition.TOP.value,
    "tab_bar_theme": TabBarTheme.DEFAULT.value,
}


def _coerce_position(value: Any) -> TabBarPosition:
    try:
        return TabBarPosition(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"tab_bar_position must be one of {[p.value for p in TabBarPosition]}",
            detail={"field": "tab_bar_position", "value": value},
        ) from None


def _coerce_theme(value: Any) -> TabBarTheme:
    # The settings picker reports an index; stored values are names
    if isinstance(value, int) and not isinstance(value, bool):
        return TabBarTheme.from_index(value)
    try:
        return TabBarTheme(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"tab_bar_theme must be one of {[t.value for t in TabBarTheme]}",
            detail={"field": "tab_bar_theme", "value": value},
        ) from None


_COERCERS = {
    "tab_bar_position": _coerce_position,
    "tab_bar_theme": _coerce_theme,
}


@dataclass
class SettingsService:
    """
    Local application preferences persisted as JSON.

    Settings never leave the machine; changes are validated, written
    atomically and announced with ``SETTINGS_CHANGED``.
    """

    store: JsonStore
    event_bus: Optional["EventBus"] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get_settings(self) -> Dict[str, str]:
        stored = self.store.load()
        settings = dict(DEFAULT_SETTINGS)
        for key, coerce in _COERCERS.items():
            if key not in stored:
                continue
            try:
                settings[key] = coerce(stored[key]).value
            except ValidationError:
                logger.warning("Ignoring invalid stored setting %s=%r", key, stored[key])
        return settings

    def validate(self, changes: Mapping[str, Any]) -> Dict[str, str]:
        """Return ``changes`` normalized to stored values, or raise ``ValidationError``."""
        unknown = set(changes) - set(_COERCERS)
        if unknown:
            raise ValidationError(f"Unknown settings: {sorted(unknown)}", detail={"fields": sorted(unknown)})
        return {key: _COERCERS[key](value).value for key, value in changes.items()}

    def update_settings(self, changes: Mapping[str, Any]) -> Dict[str, str]:
        normalized = self.validate(changes)
        with self._lock:
            settings = self.get_settings()
            settings.update(normalized)
            self.store.save(settings)
        logger.info("Settings updated: %s", normalized)
        if self.event_bus is not None:
            self.event_bus.publish(ClientEvent.SETTINGS_CHANGED, dict(settings))
        return settings

    @property
    def tab_bar_position(self) -> TabBarPosition:
        return TabBarPosition(self.get_settings()["tab_bar_position"])

    @property
    def tab_bar_theme(self) -> TabBarTheme:
        return TabBarTheme(self.get_settings()["tab_bar_theme"])
