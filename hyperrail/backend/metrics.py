"""
backend/metrics.py

Lightweight thread-safe counters for the connections repository.
No external dependencies — uses Python's threading.Lock.

Usage:
    from backend.metrics import METRICS
    METRICS.pages_fetched.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all repository counters."""

    def __init__(self) -> None:
        # --- Single pages ---
        self.pages_fetched: Counter = Counter()
        """Raw pages pulled from the upstream source."""

        self.page_cache_hits: Counter = Counter()
        """Single pages served straight from the cache."""

        # --- Combined pages ---
        self.combined_cache_hits: Counter = Counter()
        """Window/limit pages served from cache while still fresh."""

        self.combined_unchanged: Counter = Counter()
        """Stale combined pages re-verified and found unchanged."""

        self.combined_built: Counter = Counter()
        """New combined pages constructed and cached."""

        # --- Errors ---
        self.source_errors: Counter = Counter()
        """Upstream fetches that raised SourceUnavailable."""

        self.malformed_records: Counter = Counter()
        """Raw pages rejected because a record could not be mapped."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: attr.value
            for name, attr in vars(self).items()
            if isinstance(attr, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton — import from here everywhere
METRICS = Metrics()
