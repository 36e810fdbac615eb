"""
In-memory TTL cache for org describe results.
"""
from typing import Any, Dict, Optional
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class CacheEntry:
    """A single cache entry with expiration."""
    value: Any
    expires_at: datetime


class ResourceCache:
    """
    In-memory cache for org metadata that rarely changes during a run,
    such as sObject describe payloads.

    Keys are namespaced by the caller (e.g. ``describe:Case``).
    """

    def __init__(self, default_ttl_seconds: int = 600):
        """
        Args:
            default_ttl_seconds: Default time-to-live in seconds (default: 10 minutes)
        """
        self._cache: Dict[str, CacheEntry] = {}
        self.default_ttl = default_ttl_seconds
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self._cache.get(key)
        if entry is None:
            self.misses += 1
            return None

        if datetime.now() > entry.expires_at:
            del self._cache[key]
            self.misses += 1
            return None

        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self._cache[key] = CacheEntry(value=value, expires_at=datetime.now() + timedelta(seconds=ttl))

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0

    def size(self) -> int:
        return len(self._cache)
