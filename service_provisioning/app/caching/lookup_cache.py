"""
Bounded TTL cache memoizing management plane lookups.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

from shared.logging import get_logger
from shared.metrics import MetricsCollector

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    key: Hashable
    value: V
    inserted_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.inserted_at > ttl_seconds


class LookupCache(Generic[V]):
    """LRU cache with per-entry TTL for one lookup operation.

    Only non-``None`` results are stored: a producer that raises or finds
    nothing is asked again on the next call.
    """

    def __init__(self, name: str, max_size: int = 100, ttl_seconds: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic,
                 metrics: Optional[MetricsCollector] = None):
        self.name = name
        self.max_size = max(1, max_size)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._metrics = metrics
        self._entries: "OrderedDict[Hashable, CacheEntry[V]]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self.logger = get_logger(f"provisioning.cache.{name}")

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock(), self.ttl_seconds):
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted cache entry", key=str(evicted))

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every entry whose key matches ``predicate``; returns how many."""
        stale = [key for key in self._entries if predicate(key)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    async def memoize(self, key: Hashable, producer: Callable[[], Awaitable[Optional[V]]]) -> Optional[V]:
        """Return the cached value for ``key`` or run ``producer`` and keep its result."""
        cached = self.get(key)
        if cached is not None:
            self._record(hit=True)
            return cached

        self._record(hit=False)
        value = await producer()
        if value is not None:
            self.set(key, value)
        return value

    def _record(self, hit: bool) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        if self._metrics:
            metric = "cache_hits_total" if hit else "cache_misses_total"
            self._metrics.increment_counter(metric, cache_type=self.name)

    def stats(self) -> Dict[str, Any]:
        """Hit/miss counters and current size."""
        total = self._hits + self._misses
        return {
            "cache": self.name,
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._entries),
            "max_size": self.max_size,
            "hit_ratio": (self._hits / total) if total else 0.0,
        }


def cache_key(*args: Any) -> Tuple[Any, ...]:
    """Normalize call arguments into a hashable cache key."""
    return tuple(args)
