"""Time-bounded caches owned by a service instance.

Every cache takes an injectable monotonic clock so expiry can be tested
without sleeping.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")

Clock = Callable[[], float]

TABLE_CHECK_TTL_SECONDS = 60.0
TAG_PRESENCE_TTL_SECONDS = 60.0
FILTER_OPTIONS_TTL_SECONDS = 300.0
RESPONSE_CACHE_TTL_SECONDS = 30.0


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """Mapping whose entries expire *ttl* seconds after being stored.

    Thread-safe; aggregate queries populate caches from worker threads.
    ``max_entries`` bounds memory by evicting the oldest insertion.
    """

    def __init__(
        self,
        ttl: float,
        *,
        clock: Clock = time.monotonic,
        max_entries: int | None = None,
    ) -> None:
        self._ttl = float(ttl)
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[K, _Entry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        """Return the live value for *key*, or ``None`` if absent/expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: K, value: V) -> None:
        expires_at = self._clock() + self._ttl
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value=value, expires_at=expires_at)
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    oldest = next(iter(self._entries))
                    del self._entries[oldest]

    def get_or_load(self, key: K, loader: Callable[[], V]) -> V:
        """Return the cached value or compute, store and return it.

        Concurrent misses may both run *loader*; the later result wins.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: K | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MetadataCache:
    """Schema and catalog facts that change rarely.

    * table existence (negative results cached too)
    * run-log capabilities, on the table-check TTL
    * per-column tag presence
    * filter-option catalogs
    """

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        table_ttl: float = TABLE_CHECK_TTL_SECONDS,
        tag_ttl: float = TAG_PRESENCE_TTL_SECONDS,
        options_ttl: float = FILTER_OPTIONS_TTL_SECONDS,
    ) -> None:
        self.tables: TTLCache[str, bool] = TTLCache(table_ttl, clock=clock)
        self.run_logs: TTLCache[str, object] = TTLCache(table_ttl, clock=clock)
        self.tag_presence: TTLCache[str, bool] = TTLCache(tag_ttl, clock=clock)
        self.filter_options: TTLCache[str, object] = TTLCache(options_ttl, clock=clock)
