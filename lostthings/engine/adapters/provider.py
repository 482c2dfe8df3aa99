from __future__ import annotations

"""Resource provider adapters.

A provider queues named fetches, runs them as one batch per ``start()`` and
reports through its EventSystem:

- FileLoadedEvent for each item that loaded
- LoadErrorEvent for each item that failed
- BatchCompleteEvent once every item of the batch resolved

Every event carries the batch id ``start()`` returned, so two callers that
fetch the same key concurrently can each tell their own results apart.
``start()`` must be called from inside a running asyncio event loop. All
events are emitted on the loop thread.
"""

import asyncio
import itertools
import json
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..events import (
    BatchCompleteEvent, CacheClearEvent, EventSystem, FileLoadedEvent, LoadErrorEvent,
)

logger = logging.getLogger(__name__)

IMAGE = "image"
AUDIO = "audio"
DATA = "data"


@dataclass(frozen=True)
class ResourceRequest:
    key: str
    kind: str
    source: str


class IResourceProvider(ABC):
    events: EventSystem

    @abstractmethod
    def request_image(self, key: str, source: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def request_audio(self, key: str, source: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def request_data(self, key: str, source: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def start(self) -> int:  # pragma: no cover - interface
        """Flush the queue as one batch and return the batch id its events carry."""
        raise NotImplementedError

    @abstractmethod
    def get_data(self, key: str) -> Optional[Any]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def remove_all(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class QueuedResourceProvider(IResourceProvider):
    """Queue/batch bookkeeping shared by the concrete providers.

    Subclasses implement ``_fetch`` which returns the decoded resource or
    raises.
    """

    def __init__(self, events: Optional[EventSystem] = None) -> None:
        self.events = events or EventSystem()
        self._queue: List[ResourceRequest] = []
        self._cache: Dict[str, Tuple[str, Any]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._batch_ids = itertools.count(1)

    # --- queueing ---
    def request_image(self, key: str, source: str) -> None:
        self._queue.append(ResourceRequest(key, IMAGE, source))

    def request_audio(self, key: str, source: str) -> None:
        self._queue.append(ResourceRequest(key, AUDIO, source))

    def request_data(self, key: str, source: str) -> None:
        self._queue.append(ResourceRequest(key, DATA, source))

    def start(self) -> int:
        batch, self._queue = self._queue, []
        batch_id = next(self._batch_ids)
        if not batch:
            self.events.emit(BatchCompleteEvent(batch=batch_id))
            return batch_id
        task = asyncio.get_running_loop().create_task(self._run_batch(batch_id, batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return batch_id

    @property
    def pending_batches(self) -> int:
        return len(self._tasks)

    # --- cache ---
    def get(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        return entry[1] if entry else None

    def get_data(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry and entry[0] == DATA:
            return entry[1]
        return None

    def has(self, key: str) -> bool:
        return key in self._cache

    def remove_all(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        self.events.emit(CacheClearEvent(entries=count))

    # --- loading ---
    async def _run_batch(self, batch_id: int, batch: List[ResourceRequest]) -> None:
        results = await asyncio.gather(*(self._load_one(batch_id, req) for req in batch))
        failed = tuple(req.key for req, ok in zip(batch, results) if not ok)
        self.events.emit(BatchCompleteEvent(
            batch=batch_id,
            keys=tuple(req.key for req in batch),
            failed=failed,
        ))

    async def _load_one(self, batch_id: int, req: ResourceRequest) -> bool:
        start_time = time.time()
        try:
            value = await self._fetch(req)
        except Exception as e:
            logger.warning(f"Failed to load {req.kind} {req.key} from {req.source}: {e}")
            self.events.emit(LoadErrorEvent(
                batch=batch_id,
                key=req.key,
                source=req.source,
                message=str(e) or type(e).__name__,
            ))
            return False
        self._cache[req.key] = (req.kind, value)
        self.events.emit(FileLoadedEvent(
            batch=batch_id,
            key=req.key,
            category=req.kind,
            load_time_ms=(time.time() - start_time) * 1000,
        ))
        return True

    @abstractmethod
    async def _fetch(self, req: ResourceRequest) -> Any:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryResourceProvider(QueuedResourceProvider):
    """In-memory provider with scriptable outcomes.

    - resources: source -> value; a source that is not present fails
    - delays: key -> seconds before the item resolves
    - hang: keys that never resolve
    - fail_times: key -> number of attempts that fail before the item loads
    """

    def __init__(
        self,
        resources: Optional[Mapping[str, Any]] = None,
        *,
        delays: Optional[Mapping[str, float]] = None,
        hang: Iterable[str] = (),
        fail_times: Optional[Mapping[str, int]] = None,
        events: Optional[EventSystem] = None,
    ) -> None:
        super().__init__(events)
        self.resources: Dict[str, Any] = dict(resources or {})
        self.delays: Dict[str, float] = dict(delays or {})
        self.hang: Set[str] = set(hang)
        self.fail_times: Dict[str, int] = dict(fail_times or {})
        self.requests: List[ResourceRequest] = []

    async def _fetch(self, req: ResourceRequest) -> Any:
        self.requests.append(req)
        if req.key in self.hang:
            await asyncio.Event().wait()
        await asyncio.sleep(self.delays.get(req.key, 0))
        remaining = self.fail_times.get(req.key, 0)
        if remaining > 0:
            self.fail_times[req.key] = remaining - 1
            raise IOError(f"simulated failure for {req.source}")
        if req.source not in self.resources:
            raise FileNotFoundError(req.source)
        return self.resources[req.source]


class PygameResourceProvider(QueuedResourceProvider):
    """Filesystem provider decoding through pygame.

    Blocking reads run on a thread pool; results are published on the loop.
    Images are converted for the display when one is open; audio becomes a
    pygame Sound when the mixer is initialised and raw bytes otherwise.
    """

    def __init__(
        self,
        root: Path | str = ".",
        *,
        max_workers: int = 4,
        events: Optional[EventSystem] = None,
    ) -> None:
        super().__init__(events)
        self._root = Path(root)
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, source: str) -> Path:
        p = Path(source)
        if p.is_absolute():
            return p
        return self._root / p

    async def _fetch(self, req: ResourceRequest) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._read, req)

    def _read(self, req: ResourceRequest) -> Any:
        path = self.resolve(req.source)
        if not path.exists():
            raise FileNotFoundError(str(path))
        if req.kind == IMAGE:
            import pygame
            surface = pygame.image.load(str(path))
            # convert_alpha only if display initialized
            if pygame.display.get_init() and pygame.display.get_surface() is not None:
                surface = surface.convert_alpha()
            return surface
        if req.kind == AUDIO:
            import pygame
            if pygame.mixer.get_init():
                return pygame.mixer.Sound(str(path))
            return path.read_bytes()
        return json.loads(path.read_text(encoding="utf-8"))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
