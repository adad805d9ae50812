"""Simple TTL cache helpers for frequently read catalogue data."""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def pop_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; return how many went."""

        stale = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
        for key in stale:
            self._cache.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        self._cache.clear()


def resource_list_key(facility_type: Optional[str], category: Optional[str]) -> str:
    return f"resource-list:{facility_type or '*'}:{category or '*'}"
