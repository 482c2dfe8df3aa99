"""
Tests for the event bus.
"""
from lostthings.engine.events import (
    BatchCompleteEvent, EventSystem, FileLoadedEvent, LoadErrorEvent, Priority, SettingsChangeEvent,
)


class TestEventSystem:
    def test_subscribe_and_emit(self):
        es = EventSystem()
        seen = []
        es.subscribe(FileLoadedEvent, lambda e: seen.append(e.key))
        es.emit(FileLoadedEvent(key="teacup", category="image"))
        assert seen == ["teacup"]

    def test_types_are_separate(self):
        es = EventSystem()
        seen = []
        es.subscribe(LoadErrorEvent, seen.append)
        es.emit(FileLoadedEvent(key="teacup"))
        assert seen == []

    def test_priority_order(self):
        es = EventSystem()
        order = []
        es.subscribe(FileLoadedEvent, lambda e: order.append("low"), priority=Priority.LOW)
        es.subscribe(FileLoadedEvent, lambda e: order.append("high"), priority=Priority.HIGH)
        es.subscribe(FileLoadedEvent, lambda e: order.append("normal"))
        es.emit(FileLoadedEvent())
        assert order == ["high", "normal", "low"]

    def test_once(self):
        es = EventSystem()
        seen = []
        es.once(BatchCompleteEvent, seen.append)
        es.emit(BatchCompleteEvent(keys=("a",)))
        es.emit(BatchCompleteEvent(keys=("b",)))
        assert [e.keys for e in seen] == [("a",)]
        assert es.listener_count(BatchCompleteEvent) == 0

    def test_unsubscribe(self):
        es = EventSystem()
        seen = []
        unsubscribe = es.subscribe(FileLoadedEvent, seen.append)
        unsubscribe()
        unsubscribe()
        es.emit(FileLoadedEvent())
        assert seen == []

    def test_batch_filter(self):
        es = EventSystem()
        mine, everything = [], []
        es.subscribe(LoadErrorEvent, mine.append, batch=2)
        es.subscribe(LoadErrorEvent, everything.append)
        es.emit(LoadErrorEvent(batch=1, key="levels"))
        es.emit(LoadErrorEvent(batch=2, key="levels"))
        assert [e.batch for e in mine] == [2]
        assert [e.batch for e in everything] == [1, 2]

    def test_once_waits_for_its_batch(self):
        es = EventSystem()
        seen = []
        es.once(BatchCompleteEvent, seen.append, batch=7)
        es.emit(BatchCompleteEvent(batch=3))
        assert es.listener_count(BatchCompleteEvent) == 1
        es.emit(BatchCompleteEvent(batch=7))
        assert [e.batch for e in seen] == [7]
        assert es.listener_count(BatchCompleteEvent) == 0

    def test_batch_filter_skips_events_without_batch(self):
        es = EventSystem()
        seen = []
        es.subscribe(SettingsChangeEvent, seen.append, batch=1)
        es.emit(SettingsChangeEvent(key="debug", value=True))
        assert seen == []

    def test_listener_errors_do_not_propagate(self):
        es = EventSystem()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        es.subscribe(FileLoadedEvent, broken, priority=Priority.HIGH)
        es.subscribe(FileLoadedEvent, seen.append)
        es.emit(FileLoadedEvent())
        assert len(seen) == 1
