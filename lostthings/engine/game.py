"""
Game host - builds the loader, ledger and settings and hands them out.

Scenes receive the Game (or the individual components) explicitly; there is
no module-level instance to reach into.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .adapters.provider import IResourceProvider, PygameResourceProvider
from .adapters.storage import FileKeyValueStore, IKeyValueStore
from .asset_catalogue import AssetGroup, LONG_AUDIO, STARTUP_GROUPS
from .asset_loader import AssetLoader, GroupResult
from .events import EventSystem
from .level_ledger import LevelLedger, PROGRESS_KEY
from .settings_io import GameSettings, SETTINGS_KEY

logger = logging.getLogger(__name__)

DEFAULT_INIT_TIMEOUT = 15.0


@dataclass
class BootReport:
    assets_ok: bool = False
    levels_ok: bool = False
    timed_out: bool = False
    failed_assets: Tuple[str, ...] = ()
    results: Dict[str, GroupResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.assets_ok and self.levels_ok and not self.timed_out


class Game:
    """
    Composition root for the loading and progression subsystems.

    Usage:
        game = Game.from_directories("assets", "save")
        report = await game.boot()
        if report.timed_out:
            ...  # show a retry affordance
        scene = MenuScene(levels=game.levels, assets=game.assets)
    """

    def __init__(
        self,
        provider: IResourceProvider,
        store: IKeyValueStore,
        *,
        events: Optional[EventSystem] = None,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
        startup_groups: Tuple[AssetGroup, ...] = STARTUP_GROUPS,
        long_audio: AssetGroup = LONG_AUDIO,
    ):
        self.provider = provider
        self.store = store
        self.events = events or provider.events
        self.init_timeout = init_timeout

        self.settings = GameSettings(store, events=self.events)
        self.assets = AssetLoader(provider, startup_groups=startup_groups, long_audio=long_audio)
        self.levels = LevelLedger(provider, store, events=self.events)

    @classmethod
    def from_directories(cls, assets_dir: Path | str, save_dir: Path | str, **kwargs) -> "Game":
        save_path = Path(save_dir)
        return cls(
            PygameResourceProvider(Path(assets_dir)),
            FileKeyValueStore(lambda: save_path),
            **kwargs,
        )

    async def boot(self, *, long_audio: bool = False) -> BootReport:
        """Load settings, assets and levels under the initialization watchdog.

        The watchdog expiring is reported on the BootReport; it is not raised.
        """
        self.settings.load()
        report = BootReport()
        try:
            report.assets_ok, report.levels_ok = await asyncio.wait_for(
                asyncio.gather(self.assets.load_all(), self.levels.initialize()),
                timeout=self.init_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Game initialization timed out after {self.init_timeout}s")
            report.timed_out = True

        if long_audio and not report.timed_out:
            result = await self.assets.load_long_audio()
            if not result.ok:
                logger.warning(f"Background music unavailable: {result.error}")

        report.results = dict(self.assets.results)
        report.failed_assets = tuple(sorted(self.assets.failed_keys()))
        return report

    def clear_saved_data(self) -> None:
        """Remove persisted progress and settings."""
        for key in (PROGRESS_KEY, SETTINGS_KEY):
            try:
                self.store.remove(key)
            except Exception as e:
                logger.warning(f"Could not remove {key}: {e}")

    def close(self) -> None:
        self.assets.close()
        shutdown = getattr(self.provider, "shutdown", None)
        if callable(shutdown):
            shutdown()
