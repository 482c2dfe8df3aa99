"""
Tests for persisted player settings.
"""
from __future__ import annotations

import json

from lostthings.engine.adapters.storage import IKeyValueStore, MemoryKeyValueStore
from lostthings.engine.events import EventSystem, SettingsChangeEvent
from lostthings.engine.settings_io import DEFAULTS, GameSettings, SETTINGS_KEY, merge_settings


class FailingStore(IKeyValueStore):
    def get(self, key):
        raise OSError("storage unavailable")

    def set(self, key, value):
        raise OSError("storage unavailable")

    def remove(self, key):
        raise OSError("storage unavailable")


class TestMerge:
    def test_defaults_for_missing_record(self):
        assert merge_settings(None) == DEFAULTS

    def test_shallow_merge_ignores_unknown_keys(self):
        merged = merge_settings({"debug": True, "volume": 11, "language": "fr"})
        assert merged["debug"] is True
        assert merged["language"] == "fr"
        assert "volume" not in merged

    def test_mistyped_values_ignored(self):
        merged = merge_settings({"soundEnabled": "no", "difficulty": 3})
        assert merged["soundEnabled"] is True
        assert merged["difficulty"] == "normal"


class TestGameSettings:
    def test_load_defaults(self):
        settings = GameSettings(MemoryKeyValueStore())
        assert settings.load() == DEFAULTS
        assert settings.sound_enabled
        assert settings.music_enabled
        assert not settings.debug

    def test_load_stored(self):
        store = MemoryKeyValueStore({SETTINGS_KEY: json.dumps({"musicEnabled": False, "extra": 1})})
        settings = GameSettings(store)
        values = settings.load()
        assert values["musicEnabled"] is False
        assert "extra" not in values

    def test_corrupt_record(self):
        store = MemoryKeyValueStore({SETTINGS_KEY: "{oops"})
        assert GameSettings(store).load() == DEFAULTS

    def test_set_persists(self):
        store = MemoryKeyValueStore()
        settings = GameSettings(store)
        assert settings.set("language", "de") is True
        assert json.loads(store.get(SETTINGS_KEY))["language"] == "de"
        assert settings.set("volume", 3) is False
        assert settings.get("volume") is None

    def test_set_rejects_mistyped_values(self):
        store = MemoryKeyValueStore()
        settings = GameSettings(store)
        assert settings.set("debug", "yes") is False
        assert settings.debug is False
        values = settings.update(soundEnabled=0, language="fr")
        assert values["soundEnabled"] is True
        assert values["language"] == "fr"
        reloaded = GameSettings(store).load()
        assert reloaded["debug"] is False
        assert reloaded["language"] == "fr"

    def test_update_and_events(self):
        events = EventSystem()
        seen = []
        events.subscribe(SettingsChangeEvent, seen.append)
        settings = GameSettings(MemoryKeyValueStore(), events=events)
        values = settings.update(difficulty="hard", bogus=True)
        assert values["difficulty"] == "hard"
        assert "bogus" not in values
        assert [(e.key, e.value) for e in seen] == [("difficulty", "hard")]

    def test_toggle_debug(self):
        settings = GameSettings(MemoryKeyValueStore())
        assert settings.toggle_debug() is True
        assert settings.toggle_debug() is False

    def test_reset(self):
        store = MemoryKeyValueStore()
        settings = GameSettings(store)
        settings.set("soundEnabled", False)
        settings.reset()
        assert settings.as_dict() == DEFAULTS
        assert json.loads(store.get(SETTINGS_KEY)) == DEFAULTS

    def test_store_failures_absorbed(self):
        settings = GameSettings(FailingStore())
        assert settings.load() == DEFAULTS
        assert settings.save() is False
        assert settings.set("debug", True) is True
        assert settings.debug
