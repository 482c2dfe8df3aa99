from __future__ import annotations

"""Adapter interfaces and default implementations for pluggable backends.

Currently provides:
- IResourceProvider: abstraction for fetching images, audio and data
- IKeyValueStore: abstraction for durable string storage
"""

from .provider import (  # noqa: F401
    IResourceProvider, QueuedResourceProvider, MemoryResourceProvider, PygameResourceProvider,
)
from .storage import IKeyValueStore, MemoryKeyValueStore, FileKeyValueStore  # noqa: F401
