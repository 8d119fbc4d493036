"""
Time-based cache collaborator.

Wraps a cachetools TTLCache behind an explicit get/set/clear interface so it
can be injected into services (the plan catalog) instead of living as a
module-level singleton. Thread-safe.
"""

from __future__ import annotations
from cachetools import TTLCache
from typing import Any, Hashable, Optional
import threading

DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_ENTRIES = 256


class TTLStore:
    """
    Small thread-safe TTL cache.

    Usage:
        cache = TTLStore(ttl=60)
        cache.set("plan:premium", plan)
        cache.get("plan:premium")   # -> plan, or None after 60 seconds
        cache.clear("plan:premium")
        cache.clear()               # everything
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, maxsize: int = DEFAULT_MAX_ENTRIES, timer=None):
        if timer is not None:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        else:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Optional[Any]:
        with self._lock:
            return self._cache.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def clear(self, key: Optional[Hashable] = None) -> None:
        """Remove one key, or the whole cache when key is None."""
        with self._lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
