"""
Tests for the game host (boot, watchdog, saved data).
"""
from __future__ import annotations

import asyncio
import json

from lostthings.engine.adapters.provider import MemoryResourceProvider
from lostthings.engine.adapters.storage import MemoryKeyValueStore
from lostthings.engine.asset_catalogue import LEVELS_SOURCE, LONG_AUDIO, STARTUP_GROUPS
from lostthings.engine.game import Game
from lostthings.engine.level_ledger import PROGRESS_KEY
from lostthings.engine.settings_io import SETTINGS_KEY

LEVELS = {"levels": [
    {"id": i, "name": f"Level {i}", "description": "", "background": "background", "objects": []}
    for i in range(1, 4)
]}


def resources(*skip: str) -> dict:
    out = {}
    for group in STARTUP_GROUPS + (LONG_AUDIO,):
        for item in group.items:
            if item.key not in skip:
                out[item.source] = f"<{item.key}>"
    out[LEVELS_SOURCE] = LEVELS
    return out


class TestGame:
    def test_components_share_provider(self):
        provider = MemoryResourceProvider(resources())
        game = Game(provider, MemoryKeyValueStore())
        assert game.assets.provider is provider
        assert game.events is provider.events

    def test_boot(self):
        store = MemoryKeyValueStore({SETTINGS_KEY: json.dumps({"soundEnabled": False})})
        game = Game(MemoryResourceProvider(resources()), store)

        report = asyncio.run(game.boot())

        assert report.ok
        assert report.assets_ok and report.levels_ok
        assert not report.timed_out
        assert report.failed_assets == ()
        assert set(report.results) == {"images", "audio", "data"}
        assert game.levels.total_levels == 3
        assert game.settings.sound_enabled is False

    def test_boot_with_long_audio(self):
        game = Game(MemoryResourceProvider(resources()), MemoryKeyValueStore())
        report = asyncio.run(game.boot(long_audio=True))
        assert report.results["long_audio"].ok
        assert game.assets.is_loaded("background-music")

    def test_boot_reports_failures(self):
        game = Game(MemoryResourceProvider(resources("milk")), MemoryKeyValueStore())
        report = asyncio.run(game.boot())
        assert not report.ok
        assert not report.assets_ok
        assert report.levels_ok
        assert report.failed_assets == ("milk",)

    def test_watchdog(self):
        provider = MemoryResourceProvider(resources(), hang={"teacup"})
        game = Game(provider, MemoryKeyValueStore(), init_timeout=0.05)

        report = asyncio.run(game.boot())

        assert report.timed_out
        assert not report.ok
        game.close()

    def test_clear_saved_data(self):
        store = MemoryKeyValueStore()
        game = Game(MemoryResourceProvider(resources()), store)
        asyncio.run(game.boot())
        game.levels.complete_current()
        game.settings.set("debug", True)
        assert store.get(PROGRESS_KEY) is not None

        game.clear_saved_data()

        assert store.get(PROGRESS_KEY) is None
        assert store.get(SETTINGS_KEY) is None

    def test_concurrent_catalogue_fetches_stay_separate(self):
        """The ledger and the data group both fetch "levels" during boot; one attempt fails."""
        provider = MemoryResourceProvider(resources(), fail_times={"levels": 1})
        game = Game(provider, MemoryKeyValueStore())

        report = asyncio.run(game.boot())

        assert len([r for r in provider.requests if r.key == "levels"]) == 2
        assert provider.get_data("levels") == LEVELS
        # Exactly one of the two fetches failed, and each side saw its own result
        assert report.levels_ok != game.assets.is_loaded("levels")
        assert report.results["data"].ok == game.assets.is_loaded("levels")
        assert game.assets.is_failed("levels") != game.assets.is_loaded("levels")
