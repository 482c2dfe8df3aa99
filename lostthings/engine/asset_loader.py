"""
Asset Loader - drives a resource provider through the declared asset groups.

Features:
- One batch per group, raced against the group's timeout
- Per-item success/failure registry (loaded and failed are always disjoint)
- Explicit retry of failed items using their declared category
- Aggregate progress and statistics

A group resolves once, on the first of: every item loaded, any item failed,
timeout elapsed. A failure observed before the deadline always wins over the
timeout. Timing out never cancels in-flight requests; their results still
land in the registry when they arrive.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .adapters.provider import IResourceProvider
from .asset_catalogue import (
    AssetGroup, LONG_AUDIO, ResourceCategory, ResourceItem, STARTUP_GROUPS, index_items,
)
from .errors import GroupTimeoutError, ItemLoadError, LoadingError
from .events import BatchCompleteEvent, FileLoadedEvent, LoadErrorEvent, Priority

logger = logging.getLogger(__name__)

RETRY_GROUP = "retry"


class LoadOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class GroupResult:
    """Outcome of one group load (or retry). Errors are carried, never raised."""
    group: str
    outcome: LoadOutcome
    loaded: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()
    error: Optional[LoadingError] = None

    @property
    def ok(self) -> bool:
        return self.outcome is LoadOutcome.SUCCESS


@dataclass
class LoaderStats:
    declared: int = 0
    loaded: int = 0
    failed: int = 0
    pending: int = 0
    progress: float = 0.0

    @property
    def percent(self) -> float:
        return self.progress * 100.0


class _GroupWatch:
    """Futures for the two registry-driven ways a group can resolve."""

    def __init__(self, keys: Iterable[str], loop: asyncio.AbstractEventLoop) -> None:
        self.keys: Tuple[str, ...] = tuple(keys)
        self.all_loaded: asyncio.Future = loop.create_future()
        self.first_failure: asyncio.Future = loop.create_future()

    @property
    def futures(self) -> Set[asyncio.Future]:
        return {self.all_loaded, self.first_failure}

    def refresh(self, loaded: Set[str], failed: Set[str]) -> None:
        if self.all_loaded.done() or self.first_failure.done():
            return
        for key in self.keys:
            if key in failed:
                self.first_failure.set_result(key)
                return
        if all(key in loaded for key in self.keys):
            self.all_loaded.set_result(True)

    def discard(self) -> None:
        for fut in self.futures:
            if not fut.done():
                fut.cancel()


class AssetLoader:
    """
    Loads the asset catalogue through an IResourceProvider.

    Usage:
        loader = AssetLoader(provider)
        ok = await loader.load_all()          # images, short audio, data
        music = await loader.load_long_audio()
        if not ok:
            await loader.retry_failed()
        loader.is_loaded("teacup")
    """

    def __init__(
        self,
        provider: IResourceProvider,
        *,
        startup_groups: Tuple[AssetGroup, ...] = STARTUP_GROUPS,
        long_audio: AssetGroup = LONG_AUDIO,
    ):
        self._provider = provider
        self._startup_groups = tuple(startup_groups)
        self._long_audio = long_audio

        # Declared items by key; groups loaded later are added on dispatch
        self._items: Dict[str, ResourceItem] = index_items(self._startup_groups + (long_audio,))

        # Registry
        self._loaded: Set[str] = set()
        self._failed: Set[str] = set()
        self._errors: Dict[str, str] = {}

        # Keys dispatched by this loader and not yet resolved (key -> batch ids)
        self._outstanding: Dict[str, Set[int]] = {}
        self._watches: Set[_GroupWatch] = set()

        self.results: Dict[str, GroupResult] = {}

        events = provider.events
        self._unsubscribers = [
            events.subscribe(FileLoadedEvent, self._on_file_loaded, priority=Priority.HIGH),
            events.subscribe(LoadErrorEvent, self._on_load_error, priority=Priority.HIGH),
        ]

    @property
    def provider(self) -> IResourceProvider:
        return self._provider

    @property
    def startup_groups(self) -> Tuple[AssetGroup, ...]:
        return self._startup_groups

    @property
    def long_audio_group(self) -> AssetGroup:
        return self._long_audio

    # ========================================================================
    # Registry updates (provider events)
    # ========================================================================

    def _resolve(self, key: str, batch: int) -> bool:
        """Claim a result; False when the batch was not started by this loader."""
        batches = self._outstanding.get(key)
        if not batches or batch not in batches:
            return False
        batches.discard(batch)
        if not batches:
            del self._outstanding[key]
        return True

    def _on_file_loaded(self, event: FileLoadedEvent) -> None:
        if not self._resolve(event.key, event.batch):
            return
        self._failed.discard(event.key)
        self._errors.pop(event.key, None)
        self._loaded.add(event.key)
        self._refresh_watches()

    def _on_load_error(self, event: LoadErrorEvent) -> None:
        if not self._resolve(event.key, event.batch):
            return
        self._loaded.discard(event.key)
        self._failed.add(event.key)
        self._errors[event.key] = event.message
        self._refresh_watches()

    def _refresh_watches(self) -> None:
        for watch in list(self._watches):
            watch.refresh(self._loaded, self._failed)

    # ========================================================================
    # Dispatch
    # ========================================================================

    def _request(self, item: ResourceItem) -> None:
        if item.category is ResourceCategory.IMAGE:
            self._provider.request_image(item.key, item.source)
        elif item.category.is_audio:
            self._provider.request_audio(item.key, item.source)
        else:
            self._provider.request_data(item.key, item.source)

    def _start(self, keys: Iterable[str]) -> int:
        """Start the queued batch and remember which keys it answers for."""
        batch = self._provider.start()
        for key in keys:
            self._outstanding.setdefault(key, set()).add(batch)
        return batch

    def _dispatch(self, items: Iterable[ResourceItem]) -> List[str]:
        """Queue every item that is neither loaded nor already in flight, then start."""
        dispatched: List[str] = []
        for item in items:
            self._items.setdefault(item.key, item)
            if item.key in self._loaded or item.key in self._outstanding:
                continue
            self._failed.discard(item.key)
            self._request(item)
            dispatched.append(item.key)
        if dispatched:
            self._start(dispatched)
        return dispatched

    # ========================================================================
    # Loading
    # ========================================================================

    def _result(self, group: str, keys: Iterable[str], outcome: LoadOutcome,
                error: Optional[LoadingError] = None) -> GroupResult:
        keys = tuple(keys)
        return GroupResult(
            group=group,
            outcome=outcome,
            loaded=tuple(k for k in keys if k in self._loaded),
            failed=tuple(k for k in keys if k in self._failed),
            error=error,
        )

    async def load_group(self, group: AssetGroup) -> GroupResult:
        """Load one group and report how it resolved."""
        loop = asyncio.get_running_loop()
        watch = _GroupWatch(group.keys, loop)
        self._watches.add(watch)
        try:
            dispatched = self._dispatch(group.items)
            logger.debug(f"Loading group {group.name}: {len(dispatched)} of {len(group)} dispatched")
            watch.refresh(self._loaded, self._failed)
            await asyncio.wait(watch.futures, timeout=group.timeout,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._watches.discard(watch)

        if watch.first_failure.done() and not watch.first_failure.cancelled():
            key = watch.first_failure.result()
            message = self._errors.get(key) or "load error"
            logger.warning(f"Failed to load {group.name} asset {key}: {message}")
            result = self._result(group.name, group.keys, LoadOutcome.FAILED,
                                  ItemLoadError(message, key=key))
        elif watch.all_loaded.done() and not watch.all_loaded.cancelled():
            logger.info(f"Loaded group {group.name} ({len(group)} items)")
            result = self._result(group.name, group.keys, LoadOutcome.SUCCESS)
        else:
            pending = tuple(k for k in group.keys if k not in self._loaded and k not in self._failed)
            logger.warning(f"{group.name} loading timed out after {group.timeout}s")
            result = self._result(group.name, group.keys, LoadOutcome.TIMEOUT, GroupTimeoutError(
                f"{group.name} loading timed out",
                group=group.name,
                timeout=group.timeout,
                pending=pending,
            ))
        watch.discard()
        self.results[group.name] = result
        return result

    async def load_all(self) -> bool:
        """Load the startup groups concurrently. Long audio is not included."""
        results = await asyncio.gather(
            *(self.load_group(group) for group in self._startup_groups),
            return_exceptions=True,
        )
        ok = True
        for group, result in zip(self._startup_groups, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error loading group {group.name}: {result!r}")
                ok = False
            elif not result.ok:
                ok = False
        if ok:
            logger.info("All assets loaded successfully")
        else:
            logger.warning(f"Asset loading incomplete; failed: {sorted(self._failed)}")
        return ok

    async def load_long_audio(self) -> GroupResult:
        """Load the large audio group, kept out of load_all()."""
        return await self.load_group(self._long_audio)

    async def retry_failed(self, timeout: Optional[float] = None) -> GroupResult:
        """
        Re-dispatch every failed item and wait for the provider's batch.

        Args:
            timeout: optional bound in seconds; None waits for the batch
                however long it takes.
        """
        keys = sorted(self._failed)
        self._failed.clear()
        if not keys:
            return GroupResult(group=RETRY_GROUP, outcome=LoadOutcome.SUCCESS)

        loop = asyncio.get_running_loop()
        batch_done: asyncio.Future = loop.create_future()

        def on_batch(event: BatchCompleteEvent) -> None:
            if not batch_done.done():
                batch_done.set_result(event)

        logger.info(f"Retrying {len(keys)} failed assets: {keys}")
        for key in keys:
            self._errors.pop(key, None)
            self._request(self._items[key])
        # Batch events are emitted from a task, never from inside start()
        batch = self._start(keys)
        unsubscribe = self._provider.events.subscribe(
            BatchCompleteEvent, on_batch, priority=Priority.LOW, once=True, batch=batch,
        )
        try:
            await asyncio.wait({batch_done}, timeout=timeout)
        finally:
            unsubscribe()

        if not batch_done.done():
            batch_done.cancel()
            pending = tuple(k for k in keys if k not in self._loaded and k not in self._failed)
            logger.warning(f"Retry timed out after {timeout}s")
            return self._result(RETRY_GROUP, keys, LoadOutcome.TIMEOUT, GroupTimeoutError(
                "retry timed out", group=RETRY_GROUP, timeout=timeout or 0.0, pending=pending,
            ))

        still_failed = [k for k in keys if k in self._failed]
        if still_failed:
            key = still_failed[0]
            return self._result(RETRY_GROUP, keys, LoadOutcome.FAILED,
                                ItemLoadError(self._errors.get(key) or "load error", key=key))
        return self._result(RETRY_GROUP, keys, LoadOutcome.SUCCESS)

    # ========================================================================
    # Queries
    # ========================================================================

    def is_loaded(self, key: str) -> bool:
        return key in self._loaded

    def is_failed(self, key: str) -> bool:
        return key in self._failed

    def failed_keys(self) -> FrozenSet[str]:
        return frozenset(self._failed)

    def loaded_keys(self) -> FrozenSet[str]:
        return frozenset(self._loaded)

    def last_error(self, key: str) -> Optional[str]:
        return self._errors.get(key)

    def progress(self) -> float:
        """Resolution rate: loaded / (loaded + failed), 0.0 before any attempt."""
        total = len(self._loaded) + len(self._failed)
        if total == 0:
            return 0.0
        return len(self._loaded) / total

    def get_stats(self) -> LoaderStats:
        return LoaderStats(
            declared=len(self._items),
            loaded=len(self._loaded),
            failed=len(self._failed),
            pending=len(self._outstanding),
            progress=self.progress(),
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def clear(self) -> None:
        """Forget every result and drop the provider's cached resources."""
        self._loaded.clear()
        self._failed.clear()
        self._errors.clear()
        self._outstanding.clear()
        self.results.clear()
        self._provider.remove_all()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
