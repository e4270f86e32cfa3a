"""
Bounded TTL cache shared by the query optimizer and the intent router.

Entries expire after their TTL; once the entry count exceeds the bound,
the oldest insertions are evicted in the same critical section as the
insert that overflowed it.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_MISSING = object()


@dataclass
class CacheEntry:
    """A cached value and its insertion time."""

    value: Any
    inserted_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl_seconds


class TTLCache:
    """
    Key-value store with per-entry TTL and oldest-first eviction.

    Reads and writes take a lock, so the cache can be shared between
    concurrently served sessions. Last write for a key wins.
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evicted": 0,
            "expired": 0,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for key, or default on a miss."""
        with self._lock:
            value = self._lookup(key)
            if value is _MISSING:
                self._stats["misses"] += 1
                return default
            self._stats["hits"] += 1
            return value

    def contains(self, key: str) -> bool:
        """Whether a live entry exists. Does not count as a lookup."""
        with self._lock:
            return self._lookup(key) is not _MISSING

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or replace an entry, evicting the oldest past capacity."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value, self._clock(), ttl)
            self._stats["sets"] += 1
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats["evicted"] += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats["expired"] += len(expired)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_statistics(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hit_rate": self._stats["hits"] / lookups if lookups > 0 else 0.0,
            }

    def _lookup(self, key: str) -> Any:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats["expired"] += 1
            return _MISSING
        return entry.value


__all__ = ["CacheEntry", "TTLCache"]
