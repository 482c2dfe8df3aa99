"""
Tests for resource provider adapters.
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from lostthings.engine.adapters.provider import MemoryResourceProvider, PygameResourceProvider
from lostthings.engine.events import BatchCompleteEvent, FileLoadedEvent, LoadErrorEvent


def collect(provider):
    seen = {"loaded": [], "errors": [], "batches": [], "events": []}

    def track(name, attr):
        def handler(event):
            seen["events"].append(event)
            seen[name].append(getattr(event, attr) if attr else event)
        return handler

    provider.events.subscribe(FileLoadedEvent, track("loaded", "key"))
    provider.events.subscribe(LoadErrorEvent, track("errors", "key"))
    provider.events.subscribe(BatchCompleteEvent, track("batches", None))
    return seen


async def run_batch(provider):
    done = asyncio.get_running_loop().create_future()
    batch = provider.start()
    provider.events.once(BatchCompleteEvent, done.set_result, batch=batch)
    return await done


class TestMemoryResourceProvider:
    def test_batch_events(self):
        provider = MemoryResourceProvider({"a.png": "A", "levels.json": {"levels": []}})
        seen = collect(provider)
        provider.request_image("a", "a.png")
        provider.request_data("levels", "levels.json")
        provider.request_audio("missing", "missing.wav")

        batch = asyncio.run(run_batch(provider))

        assert sorted(seen["loaded"]) == ["a", "levels"]
        assert seen["errors"] == ["missing"]
        assert batch.keys == ("a", "levels", "missing")
        assert batch.failed == ("missing",)
        assert {e.batch for e in seen["events"]} == {batch.batch}
        assert provider.get("a") == "A"
        assert provider.get_data("levels") == {"levels": []}
        assert provider.get_data("a") is None

    def test_empty_start_completes_immediately(self):
        provider = MemoryResourceProvider()
        seen = collect(provider)
        batch = provider.start()
        assert [e.batch for e in seen["batches"]] == [batch]
        assert seen["batches"][0].keys == ()

    def test_start_flushes_queue(self):
        provider = MemoryResourceProvider({"a.png": "A"})

        async def scenario():
            provider.request_image("a", "a.png")
            first = provider.start()
            second = provider.start()
            await asyncio.sleep(0.01)
            return first, second

        first, second = asyncio.run(scenario())
        assert first != second
        assert len(provider.requests) == 1

    def test_same_key_in_two_batches(self):
        provider = MemoryResourceProvider({"levels.json": {"levels": []}}, fail_times={"levels": 1})
        seen = collect(provider)

        async def scenario():
            provider.request_data("levels", "levels.json")
            first = provider.start()
            provider.request_data("levels", "levels.json")
            second = provider.start()
            await asyncio.sleep(0.01)
            return first, second

        first, second = asyncio.run(scenario())
        errors = [e.batch for e in seen["events"] if isinstance(e, LoadErrorEvent)]
        loads = [e.batch for e in seen["events"] if isinstance(e, FileLoadedEvent)]
        assert errors == [first]
        assert loads == [second]

    def test_fail_times(self):
        provider = MemoryResourceProvider({"a.png": "A"}, fail_times={"a": 1})
        seen = collect(provider)

        async def scenario():
            provider.request_image("a", "a.png")
            await run_batch(provider)
            provider.request_image("a", "a.png")
            await run_batch(provider)

        asyncio.run(scenario())
        assert seen["errors"] == ["a"]
        assert seen["loaded"] == ["a"]

    def test_remove_all(self):
        provider = MemoryResourceProvider({"a.png": "A"})
        provider.request_image("a", "a.png")
        asyncio.run(run_batch(provider))
        assert provider.has("a")
        provider.remove_all()
        assert not provider.has("a")


class TestPygameResourceProvider:
    def test_loads_files(self, tmp_path: Path):
        pygame = pytest.importorskip("pygame")
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "levels.json").write_text(json.dumps({"levels": []}), encoding="utf-8")
        (tmp_path / "click.wav").write_bytes(b"RIFF0000WAVE")
        pygame.image.save(pygame.Surface((4, 4)), str(tmp_path / "teacup.bmp"))

        provider = PygameResourceProvider(tmp_path, max_workers=2)
        seen = collect(provider)
        try:
            provider.request_data("levels", "data/levels.json")
            provider.request_audio("click", "click.wav")
            provider.request_image("teacup", "teacup.bmp")
            provider.request_image("spoon", "spoon.png")
            batch = asyncio.run(run_batch(provider))
        finally:
            provider.shutdown()

        assert batch.failed == ("spoon",)
        assert seen["errors"] == ["spoon"]
        assert provider.get_data("levels") == {"levels": []}
        assert provider.get("teacup").get_size() == (4, 4)
        if not pygame.mixer.get_init():
            assert provider.get("click") == b"RIFF0000WAVE"

    def test_resolve(self, tmp_path: Path):
        provider = PygameResourceProvider(tmp_path)
        try:
            assert provider.resolve("assets/images/a.png") == tmp_path / "assets/images/a.png"
            assert provider.resolve(str(tmp_path / "x.png")) == tmp_path / "x.png"
        finally:
            provider.shutdown()
