from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from .adapters.storage import IKeyValueStore
from .events import EventSystem, SettingsChangeEvent

logger = logging.getLogger(__name__)

SETTINGS_KEY = "lost-little-things_settings"

DEFAULTS: Dict[str, Any] = {
    "debug": False,
    "soundEnabled": True,
    "musicEnabled": True,
    "difficulty": "normal",
    "language": "en",
}


def accepts(key: str, value: Any) -> bool:
    """True for a known setting whose value has the default's type."""
    return key in DEFAULTS and type(value) is type(DEFAULTS[key])


def merge_settings(data: Any) -> Dict[str, Any]:
    """Shallow-merge a stored record over the defaults.

    Unknown keys and values whose type differs from the default are ignored.
    """
    out = dict(DEFAULTS)
    if isinstance(data, dict):
        out.update({k: v for k, v in data.items() if accepts(k, v)})
    return out


class GameSettings:
    """Player settings persisted next to the progress record."""

    def __init__(self, store: IKeyValueStore, *, events: Optional[EventSystem] = None) -> None:
        self._store = store
        self._events = events
        self._values: Dict[str, Any] = dict(DEFAULTS)

    def load(self) -> Dict[str, Any]:
        try:
            raw = self._store.get(SETTINGS_KEY)
            data = json.loads(raw) if raw is not None else None
        except Exception as e:
            logger.warning(f"Could not load settings: {e}")
            data = None
        self._values = merge_settings(data)
        return dict(self._values)

    def save(self) -> bool:
        try:
            self._store.set(SETTINGS_KEY, json.dumps(self._values, separators=(",", ":")))
            return True
        except Exception as e:
            logger.warning(f"Could not save settings: {e}")
            return False

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> bool:
        """Set one known setting. Unknown keys and mistyped values are rejected."""
        if not accepts(key, value):
            logger.warning(f"Ignoring setting {key}={value!r}")
            return False
        self._values[key] = value
        self.save()
        if self._events is not None:
            self._events.emit(SettingsChangeEvent(key=key, value=value))
        return True

    def update(self, **changes: Any) -> Dict[str, Any]:
        known = {k: v for k, v in changes.items() if accepts(k, v)}
        for key in changes.keys() - known.keys():
            logger.warning(f"Ignoring setting {key}={changes[key]!r}")
        self._values.update(known)
        self.save()
        if self._events is not None:
            for key, value in known.items():
                self._events.emit(SettingsChangeEvent(key=key, value=value))
        return dict(self._values)

    def toggle_debug(self) -> bool:
        self.set("debug", not self._values.get("debug", False))
        return bool(self._values["debug"])

    def reset(self) -> None:
        self._values = dict(DEFAULTS)
        self.save()

    @property
    def debug(self) -> bool:
        return bool(self._values.get("debug"))

    @property
    def sound_enabled(self) -> bool:
        return bool(self._values.get("soundEnabled"))

    @property
    def music_enabled(self) -> bool:
        return bool(self._values.get("musicEnabled"))
