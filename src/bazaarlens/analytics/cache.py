"""TTL cache with double-checked recomputation."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

from cachetools import TTLCache

V = TypeVar("V")


def _utc_timer() -> float:
    # Wall clock rather than monotonic so frozen time drives expiry in tests
    return datetime.now(timezone.utc).timestamp()


class TtlCache(Generic[V]):
    """
    Keyed cache whose entries expire after ``ttl``.

    Storage and expiry are delegated to ``cachetools.TTLCache``, which is not
    thread-safe, so every access goes through ``_lock``. ``get_or_compute``
    checks for a fresh entry, then re-checks under the compute lock before
    calling the factory, so concurrent callers never recompute the same
    expensive value twice.
    """

    def __init__(self, ttl: timedelta, maxsize: int = 1024):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._compute_lock = threading.Lock()
        self._entries: TTLCache = TTLCache(
            maxsize=maxsize, ttl=ttl.total_seconds(), timer=_utc_timer
        )

    def get(self, key: Hashable) -> V | None:
        """Fresh value for key, or None."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def get_or_compute(self, key: Hashable, factory: Callable[[], V]) -> V:
        """Return the cached value, computing it at most once per expiry."""
        value = self.get(key)
        if value is not None:
            return value

        with self._compute_lock:
            value = self.get(key)
            if value is not None:
                return value
            value = factory()
            self.put(key, value)
            return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or all entries when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        """Number of unexpired entries."""
        with self._lock:
            self._entries.expire()
            return len(self._entries)
