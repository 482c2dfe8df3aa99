"""
Level Ledger - level catalogue, progression and persisted progress.

The catalogue is fetched once through the resource provider; progress
(current level and completed set) is written to the key-value store after
every mutation and restored on initialize(). A missing or corrupt progress
record never blocks initialization; it just means a fresh start.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from .adapters.provider import IResourceProvider
from .adapters.storage import IKeyValueStore
from .asset_catalogue import LEVELS_KEY, LEVELS_SOURCE
from .errors import CatalogueLoadError
from .events import (
    BatchCompleteEvent, EventSystem, LevelChangeEvent, LevelCompleteEvent, ProgressResetEvent,
)

logger = logging.getLogger(__name__)

PROGRESS_KEY = "lost-little-things_progress"

REQUIRED_FIELDS = ("id", "name", "description", "objects", "background")


# ============================================================================
# Level definitions
# ============================================================================

@dataclass(frozen=True)
class HiddenObjectSpec:
    """One object to find: identity, placement, hint and image key."""
    id: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    hint: str = ""
    image: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HiddenObjectSpec":
        return cls(
            id=str(data.get("id", "")),
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 0)),
            height=float(data.get("height", 0)),
            hint=str(data.get("hint", "")),
            image=data.get("image"),
        )


def _optional(value: Any, cast: Callable[[Any], Any]) -> Any:
    return None if value is None else cast(value)


@dataclass(frozen=True)
class LevelDefinition:
    index: int
    id: Any
    name: str
    description: str
    background: str
    objects: Tuple[HiddenObjectSpec, ...]
    time_limit: Optional[float] = None
    required_objects: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def objects_to_find(self) -> int:
        """How many finds complete the level (all objects unless stated)."""
        if self.required_objects:
            return min(int(self.required_objects), len(self.objects))
        return len(self.objects)

    @classmethod
    def from_dict(cls, index: int, data: Mapping[str, Any]) -> "LevelDefinition":
        return cls(
            index=index,
            id=data["id"],
            name=str(data["name"]),
            description=str(data["description"]),
            background=str(data["background"]),
            objects=tuple(HiddenObjectSpec.from_dict(o) for o in data["objects"]),
            time_limit=_optional(data.get("timeLimit"), float),
            required_objects=_optional(data.get("requiredObjects"), int),
            raw=dict(data),
        )


def validate_level(definition: Any) -> bool:
    """Check a raw level mapping has every required field and a list of objects."""
    if not isinstance(definition, Mapping):
        return False
    for name in REQUIRED_FIELDS:
        if name not in definition:
            logger.error(f"Level data missing required field: {name}")
            return False
    if not isinstance(definition["objects"], list):
        logger.error("Level objects must be a list")
        return False
    return True


def parse_catalogue(data: Any) -> Tuple[LevelDefinition, ...]:
    """Build level definitions from a ``{"levels": [...]}`` record."""
    if not isinstance(data, Mapping):
        raise CatalogueLoadError("level data is not an object")
    raw_levels = data.get("levels", [])
    if not isinstance(raw_levels, list):
        raise CatalogueLoadError("'levels' must be a list")
    levels: List[LevelDefinition] = []
    for i, raw in enumerate(raw_levels):
        if not validate_level(raw):
            raise CatalogueLoadError(f"level {i} is invalid")
        try:
            levels.append(LevelDefinition.from_dict(i, raw))
        except (TypeError, ValueError, AttributeError) as e:
            raise CatalogueLoadError(f"level {i} is invalid: {e}") from e
    return tuple(levels)


# ============================================================================
# Persisted record
# ============================================================================

def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass
class ProgressRecord:
    """``{"currentLevel", "completedLevels", "timestamp"}`` as stored."""
    current_level: int = 0
    completed_levels: List[int] = field(default_factory=list)
    timestamp: int = 0

    def to_json(self) -> str:
        return json.dumps({
            "currentLevel": self.current_level,
            "completedLevels": list(self.completed_levels),
            "timestamp": self.timestamp,
        }, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "ProgressRecord":
        """Parse a stored record; raises ValueError when it is unusable."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("progress record is not an object")
        current = data.get("currentLevel", 0)
        completed = data.get("completedLevels", [])
        if not _is_index(current):
            raise ValueError(f"invalid currentLevel: {current!r}")
        if not isinstance(completed, list) or not all(_is_index(i) for i in completed):
            raise ValueError(f"invalid completedLevels: {completed!r}")
        ts = data.get("timestamp", 0)
        return cls(
            current_level=current,
            completed_levels=list(completed),
            timestamp=int(ts) if isinstance(ts, (int, float)) and not isinstance(ts, bool) else 0,
        )


@dataclass
class LedgerStats:
    total_levels: int = 0
    completed_levels: int = 0
    current_level: int = 0
    completion_percentage: int = 0
    unlocked_levels: int = 0

    def to_dict(self) -> dict:
        return {
            "totalLevels": self.total_levels,
            "completedLevels": self.completed_levels,
            "currentLevel": self.current_level,
            "completionPercentage": self.completion_percentage,
            "unlockedLevels": self.unlocked_levels,
        }


# ============================================================================
# Ledger
# ============================================================================

class LevelLedger:
    """
    Ordered level progression with persistence.

    Usage:
        ledger = LevelLedger(provider, store)
        if await ledger.initialize():
            level = ledger.get_current_level()
            ledger.complete_current()
            ledger.advance()
    """

    def __init__(
        self,
        provider: IResourceProvider,
        store: IKeyValueStore,
        *,
        events: Optional[EventSystem] = None,
        source: str = LEVELS_SOURCE,
    ):
        self._provider = provider
        self._store = store
        self._events = events
        self._source = source

        self._levels: Tuple[LevelDefinition, ...] = ()
        self._current = 0
        self._completed: Set[int] = set()
        self._initialized = False

    # =========================================
    # Initialization
    # =========================================

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        """Load the catalogue, then restore progress. False leaves state untouched."""
        try:
            data = await self._fetch_catalogue()
            levels = parse_catalogue(data)
        except CatalogueLoadError as e:
            logger.error(f"Failed to initialize level ledger: {e}")
            return False

        self._levels = levels
        self._load_progress()
        self._initialized = True
        logger.info(f"Loaded {len(self._levels)} levels")
        return True

    async def _fetch_catalogue(self) -> Any:
        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def on_batch(event: BatchCompleteEvent) -> None:
            if done.done():
                return
            if LEVELS_KEY in event.failed:
                done.set_exception(CatalogueLoadError("failed to load level data"))
            else:
                done.set_result(self._provider.get_data(LEVELS_KEY))

        self._provider.request_data(LEVELS_KEY, self._source)
        batch = self._provider.start()
        unsubscribe = self._provider.events.subscribe(BatchCompleteEvent, on_batch, once=True, batch=batch)
        try:
            data = await done
        finally:
            unsubscribe()
        if data is None:
            raise CatalogueLoadError("level data missing from provider cache")
        return data

    # =========================================
    # Catalogue queries
    # =========================================

    @property
    def levels(self) -> Tuple[LevelDefinition, ...]:
        return self._levels

    @property
    def total_levels(self) -> int:
        return len(self._levels)

    @property
    def current_index(self) -> int:
        return self._current

    @property
    def completed(self) -> frozenset[int]:
        return frozenset(self._completed)

    def get_level(self, index: int) -> Optional[LevelDefinition]:
        if 0 <= index < len(self._levels):
            return self._levels[index]
        return None

    def get_current_level(self) -> Optional[LevelDefinition]:
        return self.get_level(self._current)

    def get_level_difficulty(self, index: int) -> str:
        level = self.get_level(index)
        if level is None:
            return "easy"
        count = len(level.objects)
        time_limit = level.time_limit or 0
        if count <= 3 and time_limit >= 120:
            return "easy"
        if count <= 5 and time_limit >= 90:
            return "medium"
        return "hard"

    # =========================================
    # Navigation
    # =========================================

    def _move_to(self, index: int) -> None:
        previous = self._current
        self._current = index
        self._save_progress()
        logger.debug(f"Current level {previous} -> {index}")
        if self._events is not None:
            self._events.emit(LevelChangeEvent(index=index, previous=previous))

    def set_current(self, index: int) -> bool:
        if 0 <= index < len(self._levels):
            self._move_to(index)
            return True
        return False

    def advance(self) -> bool:
        if self._current < len(self._levels) - 1:
            self._move_to(self._current + 1)
            return True
        return False

    def retreat(self) -> bool:
        if self._current > 0:
            self._move_to(self._current - 1)
            return True
        return False

    # =========================================
    # Completion
    # =========================================

    def complete_current(self) -> None:
        self._completed.add(self._current)
        self._save_progress()
        logger.debug(f"Completed level {self._current}")
        if self._events is not None:
            self._events.emit(LevelCompleteEvent(
                index=self._current, percentage=self.completion_percentage(),
            ))

    def is_completed(self, index: int) -> bool:
        return index in self._completed

    def is_current_completed(self) -> bool:
        return self.is_completed(self._current)

    def is_unlocked(self, index: int) -> bool:
        if index == 0:
            return True
        return self.is_completed(index - 1)

    def unlocked_indices(self) -> List[int]:
        return [i for i in range(len(self._levels)) if self.is_unlocked(i)]

    def completion_percentage(self) -> int:
        if not self._levels:
            return 0
        # half-up rounding: 1 of 8 levels is 13%
        return int(math.floor(100 * len(self._completed) / len(self._levels) + 0.5))

    def reset_progress(self) -> None:
        self._current = 0
        self._completed.clear()
        self._save_progress()
        logger.info("Progress reset")
        if self._events is not None:
            self._events.emit(ProgressResetEvent())

    def get_statistics(self) -> LedgerStats:
        return LedgerStats(
            total_levels=len(self._levels),
            completed_levels=len(self._completed),
            current_level=self._current,
            completion_percentage=self.completion_percentage(),
            unlocked_levels=len(self.unlocked_indices()),
        )

    # =========================================
    # Dynamic levels
    # =========================================

    def validate_level(self, definition: Any) -> bool:
        return validate_level(definition)

    def add_level(self, definition: Mapping[str, Any]) -> bool:
        if not validate_level(definition):
            return False
        try:
            level = LevelDefinition.from_dict(len(self._levels), definition)
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Rejected level {definition.get('id')!r}: {e}")
            return False
        self._levels = self._levels + (level,)
        return True

    # =========================================
    # Persistence
    # =========================================

    def _save_progress(self) -> bool:
        record = ProgressRecord(
            current_level=self._current,
            completed_levels=sorted(self._completed),
            timestamp=int(time.time() * 1000),
        )
        try:
            self._store.set(PROGRESS_KEY, record.to_json())
            return True
        except Exception as e:
            logger.warning(f"Could not save progress: {e}")
            return False

    def _load_progress(self) -> None:
        self._current = 0
        self._completed = set()
        try:
            raw = self._store.get(PROGRESS_KEY)
        except Exception as e:
            logger.warning(f"Could not read progress: {e}")
            return
        if raw is None:
            return
        try:
            record = ProgressRecord.from_json(raw)
        except ValueError as e:
            logger.warning(f"Ignoring corrupt progress record: {e}")
            return

        total = len(self._levels)
        self._current = record.current_level if record.current_level < total else 0
        self._completed = {i for i in record.completed_levels if i < total}
        dropped = len(set(record.completed_levels)) - len(self._completed)
        if dropped:
            logger.info(f"Dropped {dropped} completed levels beyond the catalogue")
