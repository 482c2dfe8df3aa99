from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class LoadingError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - formatting
        return self.message


@dataclass
class ItemLoadError(LoadingError):
    """A single resource failed: bad locator, decode failure or provider error."""
    key: str = ""

    def __str__(self) -> str:
        return f"{self.key}: {self.message}" if self.key else self.message


@dataclass
class GroupTimeoutError(LoadingError):
    group: str = ""
    timeout: float = 0.0
    pending: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        waiting = f" (waiting on {', '.join(self.pending)})" if self.pending else ""
        return f"{self.message}{waiting}"


@dataclass
class CatalogueLoadError(LoadingError):
    pass


@dataclass
class PersistenceError(LoadingError):
    key: str = ""

    def __str__(self) -> str:
        return f"{self.key}: {self.message}" if self.key else self.message
