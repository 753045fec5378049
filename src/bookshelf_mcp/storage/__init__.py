"""
Key-value storage backing the OAuth provider.

Architecture:
- KeyValueStore Protocol: interface the OAuth provider is written against
- MemoryKeyValueStore: in-process implementation with per-key expiry
"""

from __future__ import annotations

import math
import time
from typing import Any, Optional, Protocol

from cachetools import TLRUCache  # type: ignore[import-untyped]

__all__ = ["KeyValueStore", "MemoryKeyValueStore"]


class KeyValueStore(Protocol):
    """Async key-value store with atomic per-key operations.

    Values are JSON-compatible dicts. A ``ttl`` (seconds) makes the entry
    invisible once elapsed.
    """

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        ...

    async def put(self, key: str, value: dict[str, Any], ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def take(self, key: str) -> Optional[dict[str, Any]]:
        """Atomically read and delete a key (single-use records)."""
        ...


def _time_to_use(key: str, entry: tuple[dict[str, Any], Optional[int]], now: float) -> float:
    ttl = entry[1]
    return now + ttl if ttl is not None else math.inf


class MemoryKeyValueStore:
    """In-memory KeyValueStore backed by a ``cachetools.TLRUCache``.

    Each entry carries its own time-to-use, and expired entries are swept
    on every write, so records that are never read again do not pile up.
    Every method completes without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self, clock=time.time, maxsize: int = 100_000) -> None:
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=clock)

    async def get(self, key: str) -> Optional[dict[str, Any]]:
        entry = self._cache.get(key)
        return dict(entry[0]) if entry is not None else None

    async def put(self, key: str, value: dict[str, Any], ttl: Optional[int] = None) -> None:
        self._cache[key] = (dict(value), ttl)

    async def delete(self, key: str) -> bool:
        try:
            del self._cache[key]
        except KeyError:
            return False
        return True

    async def take(self, key: str) -> Optional[dict[str, Any]]:
        entry = self._cache.pop(key, None)
        if entry is None:
            return None
        return dict(entry[0])

    def __len__(self) -> int:
        return len(self._cache)
