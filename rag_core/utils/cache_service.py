"""
In-Memory LRU Cache Service.

Keeps recent query embeddings so repeated questions within a warm Lambda
do not pay for another embedding call.
"""

import hashlib
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Optional


def make_cache_key(*parts: object) -> str:
    """Hash the parts into a fixed-length key."""
    raw = ":".join(str(part) for part in parts)
    return hashlib.md5(raw.encode()).hexdigest()


class LRUCache:
    """Thread-safe LRU cache with TTL support."""

    def __init__(self, max_size: int = 100, ttl_seconds: int = 300):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: OrderedDict[str, tuple[Any, datetime]] = OrderedDict()
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if exists and not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            value, stored_at = entry
            if datetime.now(timezone.utc) - stored_at > timedelta(seconds=self.ttl_seconds):
                del self._cache[key]
                return None

            self._cache.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache, evicting the least recently used entry when full."""
        with self._lock:
            self._cache[key] = (value, datetime.now(timezone.utc))
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
