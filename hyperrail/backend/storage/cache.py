"""
storage/cache.py

Key/value cache with per-entry TTL.

CacheStore  — the interface the repository depends on (get / put / has)
MemoryCache — in-process implementation, used by default and in tests

Expired entries are invisible to get()/has() and are dropped lazily the
next time they are touched. There is no background eviction.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    def get(self, key: str) -> Any | None:
        ...

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    def has(self, key: str) -> bool:
        ...


class MemoryCache:
    """
    Thread-safe in-memory TTL cache.

    Concurrent writers to the same key are not coordinated: the last
    put() wins.

    Args:
        clock: Returns the current time in seconds. Defaults to
               time.monotonic; tests pass a controllable fake.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def _live_entry(self, key: str) -> tuple[Any, float] | None:
        """Return the entry for key if unexpired. Caller must hold the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            del self._entries[key]
            logger.debug("Cache expired key=%s", key)
            return None
        return entry

    def get(self, key: str) -> Any | None:
        """Return the cached value or None on miss."""
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry[0]

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store value for ttl_seconds. A non-positive TTL stores nothing."""
        if ttl_seconds <= 0:
            logger.debug("Cache skip key=%s (ttl=%.1fs)", key, ttl_seconds)
            return
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)
        logger.debug("Cache put key=%s ttl=%.1fs", key, ttl_seconds)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def __len__(self) -> int:
        return len(self._entries)
