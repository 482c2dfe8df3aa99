"""
Asset catalogue - the fixed set of named resources the game ships with.

Each resource is declared once with an explicit category, so nothing
downstream has to guess how to load a key from its name. Resources are
grouped by how they are fetched together and how long a group may take.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Tuple


class ResourceCategory(Enum):
    """Resource categories."""
    IMAGE = "image"
    SHORT_AUDIO = "short_audio"
    LONG_AUDIO = "long_audio"
    DATA = "data"

    @property
    def is_audio(self) -> bool:
        return self in (ResourceCategory.SHORT_AUDIO, ResourceCategory.LONG_AUDIO)


@dataclass(frozen=True)
class ResourceItem:
    """A declared resource: unique key, category and source locator."""
    key: str
    category: ResourceCategory
    source: str


@dataclass(frozen=True)
class AssetGroup:
    """A fixed set of items loaded together under one timeout (seconds)."""
    name: str
    items: Tuple[ResourceItem, ...]
    timeout: float

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(item.key for item in self.items)

    def __len__(self) -> int:
        return len(self.items)


def _images(*names: str) -> Tuple[ResourceItem, ...]:
    return tuple(
        ResourceItem(name, ResourceCategory.IMAGE, f"assets/images/{name}.png")
        for name in names
    )


def _data(*names: str) -> Tuple[ResourceItem, ...]:
    return tuple(
        ResourceItem(name, ResourceCategory.DATA, f"assets/data/{name}.json")
        for name in names
    )


IMAGES = AssetGroup(
    name="images",
    items=_images("background", "teacup", "spoon", "sugar", "milk", "button", "ui-panel"),
    timeout=15.0,
)

SHORT_AUDIO = AssetGroup(
    name="audio",
    items=(
        ResourceItem("click", ResourceCategory.SHORT_AUDIO, "assets/audio/click.wav"),
        ResourceItem("success", ResourceCategory.SHORT_AUDIO, "assets/audio/success.mp3"),
        ResourceItem("level-complete", ResourceCategory.SHORT_AUDIO, "assets/audio/level-complete.wav"),
    ),
    timeout=20.0,
)

DATA = AssetGroup(
    name="data",
    items=_data("levels", "ui-text"),
    timeout=10.0,
)

# Large and not needed for first interaction; loaded by an explicit call only.
LONG_AUDIO = AssetGroup(
    name="long_audio",
    items=(
        ResourceItem("background-music", ResourceCategory.LONG_AUDIO, "assets/audio/background-music.wav"),
    ),
    timeout=60.0,
)

# Groups raced together by AssetLoader.load_all()
STARTUP_GROUPS: Tuple[AssetGroup, ...] = (IMAGES, SHORT_AUDIO, DATA)

LEVELS_KEY = "levels"
LEVELS_SOURCE = "assets/data/levels.json"


def index_items(groups: Iterable[AssetGroup]) -> Dict[str, ResourceItem]:
    """Map every declared key to its item; a key may only be declared once."""
    index: Dict[str, ResourceItem] = {}
    for group in groups:
        for item in group.items:
            existing = index.get(item.key)
            if existing is not None and existing != item:
                raise ValueError(f"resource key declared twice: {item.key}")
            index[item.key] = item
    return index
