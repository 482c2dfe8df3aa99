"""
Event bus for Lost Little Things.

Resource providers publish item and batch events tagged with the id of the
batch that produced them; the asset loader and the level ledger subscribe
either to everything or to one batch only. The ledger and settings publish
their own state changes for the scene layer.

All emits happen on the event loop thread.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Listener priority - higher values run first."""
    LOW = 25
    NORMAL = 50
    HIGH = 75


@dataclass
class Event:
    """Base class for all events."""


# ============================================================================
# Resource Events
# ============================================================================

@dataclass
class ResourceEvent(Event):
    """Base class for provider events; ``batch`` is the id ``start()`` returned."""
    batch: int = 0


@dataclass
class FileLoadedEvent(ResourceEvent):
    """A single queued resource finished loading."""
    key: str = ""
    category: str = ""
    load_time_ms: float = 0.0


@dataclass
class LoadErrorEvent(ResourceEvent):
    """A single queued resource failed to load."""
    key: str = ""
    source: str = ""
    message: str = ""


@dataclass
class BatchCompleteEvent(ResourceEvent):
    """Every item of a started batch resolved (success or error)."""
    keys: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()


@dataclass
class CacheClearEvent(ResourceEvent):
    entries: int = 0


# ============================================================================
# Progression Events
# ============================================================================

@dataclass
class LevelEvent(Event):
    index: int = 0


@dataclass
class LevelChangeEvent(LevelEvent):
    previous: int = 0


@dataclass
class LevelCompleteEvent(LevelEvent):
    percentage: int = 0


@dataclass
class ProgressResetEvent(Event):
    pass


@dataclass
class SettingsChangeEvent(Event):
    key: str = ""
    value: Any = None


# ============================================================================
# Event Bus
# ============================================================================

T = TypeVar('T', bound=Event)


@dataclass
class Listener:
    callback: Callable[[Any], None]
    priority: Priority = Priority.NORMAL
    once: bool = False
    batch: Optional[int] = None

    def accepts(self, event: Event) -> bool:
        if self.batch is None:
            return True
        return getattr(event, "batch", None) == self.batch


class EventSystem:
    """
    Typed event bus with priorities and per-batch subscriptions.

    Usage:
        events = EventSystem()
        unsubscribe = events.subscribe(FileLoadedEvent, on_loaded, priority=Priority.HIGH)

        batch = provider.start()
        events.subscribe(BatchCompleteEvent, on_done, batch=batch, once=True)
    """

    def __init__(self) -> None:
        self._listeners: Dict[Type[Event], List[Listener]] = defaultdict(list)

    def subscribe(
        self,
        event_type: Type[T],
        callback: Callable[[T], None],
        priority: Priority = Priority.NORMAL,
        once: bool = False,
        batch: Optional[int] = None,
    ) -> Callable[[], None]:
        """
        Subscribe to an event type.

        Args:
            event_type: The event class to listen for
            callback: Called with each matching event
            priority: Higher priorities are called first
            once: Unsubscribe after the first matching event
            batch: Only deliver resource events from this batch

        Returns:
            Unsubscribe function
        """
        listener = Listener(callback=callback, priority=priority, once=once, batch=batch)
        listeners = self._listeners[event_type]
        listeners.append(listener)
        listeners.sort(key=lambda l: l.priority, reverse=True)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)
        return unsubscribe

    def once(
        self,
        event_type: Type[T],
        callback: Callable[[T], None],
        priority: Priority = Priority.NORMAL,
        batch: Optional[int] = None,
    ) -> Callable[[], None]:
        return self.subscribe(event_type, callback, priority=priority, once=True, batch=batch)

    def emit(self, event: Event) -> None:
        """Deliver an event; a failing listener is logged and skipped."""
        event_type = type(event)
        listeners = self._listeners.get(event_type, [])
        for listener in list(listeners):
            if not listener.accepts(event):
                continue
            if listener.once and listener in listeners:
                listeners.remove(listener)
            try:
                listener.callback(event)
            except Exception as e:
                logger.error(f"Error in listener for {event_type.__name__}: {e}", exc_info=True)

    def listener_count(self, event_type: Optional[Type[Event]] = None) -> int:
        if event_type:
            return len(self._listeners.get(event_type, []))
        return sum(len(l) for l in self._listeners.values())
