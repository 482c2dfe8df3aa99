from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Optional
import re

from ..errors import PersistenceError


class IKeyValueStore(ABC):
    """Abstract durable string store (the browser's localStorage shape).

    Implementations may raise OSError or PersistenceError on any call;
    callers are expected to absorb those.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def remove(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def keys(self) -> list[str]:  # pragma: no cover - interface
        return []


class MemoryKeyValueStore(IKeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None, *, quota: Optional[int] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._quota = quota

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self._quota:
                raise PersistenceError("storage quota exceeded", key=key)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class FileKeyValueStore(IKeyValueStore):
    """Filesystem-backed store: one ``<key>.json`` text file per key."""

    def __init__(self, get_base_dir: Callable[[], Path]) -> None:
        self._get_base = get_base_dir

    def _ensure_dir(self) -> Path:
        base = self._get_base()
        base.mkdir(parents=True, exist_ok=True)
        return base

    def _key_path(self, key: str) -> Path:
        return self._ensure_dir() / f"{_SAFE_NAME.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        p = self._key_path(key)
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        p = self._key_path(key)
        tmp = p.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(p)

    def remove(self, key: str) -> None:
        p = self._key_path(key)
        if p.exists():
            p.unlink()

    def keys(self) -> list[str]:
        base = self._ensure_dir()
        return sorted(p.stem for p in base.glob("*.json"))
