"""
Cache capability and the default in-memory implementation.

The sweep pipeline never touches a persistence API directly: components
that memoize data (reference rates, probe results) receive an object
satisfying ``Cache`` through their constructor.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class Cache(Protocol):
    """Minimal async key/value cache."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def clear(self) -> None: ...


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory TTL cache with LRU eviction."""

    def __init__(self, default_ttl: int = 300, max_size: int = 1000):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._entries: Dict[str, CacheEntry] = {}
        self._access_order: List[str] = []
        self._lock = asyncio.Lock()

    def _forget(self, key: str) -> None:
        self._entries.pop(key, None)
        if key in self._access_order:
            self._access_order.remove(key)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if time.monotonic() > entry.expires_at:
                self._forget(key)
                return None

            # Most recently used goes last
            self._access_order.remove(key)
            self._access_order.append(key)
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        async with self._lock:
            ttl = ttl if ttl is not None else self.default_ttl
            self._forget(key)
            self._entries[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
            self._access_order.append(key)

            while len(self._entries) > self.max_size:
                self._forget(self._access_order[0])

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._access_order.clear()

    def size(self) -> int:
        return len(self._entries)


def cache_key(*parts: Any) -> str:
    """Build a namespaced cache key from its parts. Parts are used verbatim."""
    return ":".join(str(p) for p in parts)
