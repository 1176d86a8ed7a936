"""
Explicit time-to-live cache for odds lookups.

Owned by whoever constructs it (the odds feed client keeps one per instance);
there is no module-level cache.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class TTLCache:
    """Key/value cache where every entry expires ``ttl_seconds`` after it was stored."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value for ``key``, or None when missing or expired."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                self._stats.evictions += 1
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return value

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            if key not in self._data and len(self._data) >= self.max_entries:
                # Drop the entry closest to expiry
                oldest = min(self._data, key=lambda k: self._data[k][0])
                del self._data[oldest]
                self._stats.evictions += 1
            self._data[key] = (now + self.ttl_seconds, value)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._data),
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "evictions": self._stats.evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]
            self._stats.evictions += 1
