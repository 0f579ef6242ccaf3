"""
Bounded LRU result cache with per-entry TTL.

The GraphExecutor stores each successful ``FlowResult`` here under
``make_cache_key(flow_id, input)`` so that a repeated call with identical
input is answered without traversing the graph again.

Manifesto:
    Caching completed runs is only safe if the cache can never grow without
    bound or hand back stale results:

    - **Bounded:** At most ``max_size`` entries, least-recently-used evicted first
    - **Expiring:** Every entry expires ``ttl_seconds`` after insertion
    - **Recency-aware:** A ``get`` hit protects the key from the next eviction
    - **Thread-safe:** All operations run under one ``threading.Lock``
    - **Never fatal:** Internal faults degrade to a miss / no-op and are logged

Architecture:
    ::

        ResultCache
        ├── _entries: OrderedDict[str, CacheEntry]   (LRU first, MRU last)
        ├── _lock: threading.Lock
        └── counters: hits / misses / evictions / expired

        API: get(key) → value | None
             set(key, value)
             delete(key) → bool
             exists(key) → bool
             clear()
             size() → int
             stats() → CacheStats

Examples:
    >>> from flowspine.core.cache import ResultCache
    >>> cache = ResultCache(max_size=2, ttl_seconds=60)
    >>> cache.set("a", 1)
    >>> cache.set("b", 2)
    >>> cache.get("a")
    1
    >>> cache.set("c", 3)   # evicts "b", the least recently used
    >>> cache.exists("b")
    False

Performance:
    - O(1) get/set/delete via ``OrderedDict.move_to_end`` / ``popitem(last=False)``
    - TTL cleanup is lazy (checked on get/exists); ``purge_expired`` sweeps eagerly
    - ``stats()`` is O(n): it serializes entries for the memory estimate

Guardrails:
    ❌ DON'T: Cache failed results (they would be replayed as failures)
    ✅ DO: Only ``set`` outcomes that are safe to replay

Tags:
    cache, lru, ttl, thread-safe, flowspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from flowspine.core.hashing import canonical_json, make_cache_key
from flowspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached value with its insertion time and access count."""

    value: Any
    created_at: float
    expires_at: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time snapshot of cache counters."""

    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int
    expired: int
    hit_rate: float
    memory_usage: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ResultCache:
    """Thread-safe LRU cache with absolute TTL from insertion.

    Attributes:
        max_size: Maximum number of entries before LRU eviction.
        ttl_seconds: Lifetime of each entry, measured from ``set``.

    Example:
        cache = ResultCache(max_size=500, ttl_seconds=300)
        cache.set(make_cache_key("checkout", payload), result)
        hit = cache.get(make_cache_key("checkout", payload))
    """

    def __init__(
        self,
        *,
        max_size: int = 1000,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        bytes_per_char: int = 2,
    ):
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries (LRU eviction after).
            ttl_seconds: Per-entry TTL in seconds.
            clock: Monotonic time source; injectable for tests.
            bytes_per_char: Factor applied to serialized length in ``stats()``.
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._bytes_per_char = bytes_per_char

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expired = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expired += 1
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            entry.access_count += 1
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        """Store ``value``; evicts the LRU entry first when at capacity."""
        now = self._clock()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("cache.evicted", key=evicted_key)

            self._entries[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=now + self._ttl,
            )

    def delete(self, key: str) -> bool:
        """Remove a key. Returns False if it was not cached."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired (does not touch recency)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expired += 1
                return False
            return True

    def purge_expired(self) -> int:
        """Drop every expired entry now; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in stale:
                del self._entries[key]
            self._expired += len(stale)
        return len(stale)

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expired = 0

    def size(self) -> int:
        """Return current number of cached entries (expired ones included until touched)."""
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys ordered from least to most recently used."""
        with self._lock:
            return list(self._entries.keys())

    def stats(self) -> CacheStats:
        """Snapshot of counters plus an estimate of the memory held by values."""
        with self._lock:
            values = [entry.value for entry in self._entries.values()]
            hits, misses = self._hits, self._misses
            snapshot = dict(
                size=len(self._entries),
                capacity=self._max_size,
                hits=hits,
                misses=misses,
                evictions=self._evictions,
                expired=self._expired,
            )

        memory = 0
        for value in values:
            try:
                memory += len(canonical_json(value)) * self._bytes_per_char
            except (TypeError, ValueError) as e:
                logger.warning("cache.size_estimate_failed", error=str(e))

        total = hits + misses
        return CacheStats(
            hit_rate=(hits / total) if total else 0.0,
            memory_usage=memory,
            **snapshot,
        )


__all__ = ["CacheEntry", "CacheStats", "ResultCache", "make_cache_key"]
