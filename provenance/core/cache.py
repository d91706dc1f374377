"""provenance.core.cache

Bounded in-memory TTL cache.

Used for actor role lookups, which are read on every write and change
rarely. Entries expire after a TTL; when full, the least recently used
entry is dropped. A grant or revoke invalidates its key directly, so the
TTL only bounds how long an out-of-process change can go unseen.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    size: int


class TTLCache:
    """Thread-safe TTL cache with an LRU size bound."""

    def __init__(self, default_ttl_s: float = 60.0, *, max_entries: int = 10_000):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._default_ttl_s = float(default_ttl_s)
        self._max_entries = int(max_entries)
        self._store: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._store.get(key)
            if item is None or time.monotonic() >= item[0]:
                self._store.pop(key, None)
                self._misses += 1
                return None
            self._store.move_to_end(key)
            self._hits += 1
            return item[1]

    def set(self, key: str, value: Any, *, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else float(ttl_s)
        if ttl <= 0:
            return
        with self._lock:
            self._store[str(key)] = (time.monotonic() + ttl, value)
            self._store.move_to_end(str(key))
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._store))
