"""
Bounded in-memory cache store with passive expiry.

Entries expire lazily: get() treats an expired entry as a miss but leaves
it in place so the consolidation layer can still peek() at the last known
good payload. Physical removal only happens when put() pushes the store
past capacity, evicting in least-recently-stored order.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with the time it was stored and its lifetime."""

    key: str
    payload: Any
    stored_at: float
    ttl_seconds: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_valid(self, now: float) -> bool:
        """Valid iff now - stored_at < ttl."""
        return now - self.stored_at < self.ttl_seconds


@dataclass(frozen=True)
class CacheStats:
    size: int
    keys: list[str]


class CacheStore:
    """
    Key -> CacheEntry map with bounded size.

    Args:
        max_entries: Capacity; exceeding it on put() triggers eviction
        clock: Seconds since the epoch (injectable for tests)
    """

    def __init__(
        self,
        max_entries: int = 256,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._clock = clock
        # Ordered by stored_at: oldest first
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry if present and unexpired, else None."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry regardless of expiry (last known good)."""
        return self._entries.get(key)

    def put(self, key: str, payload: Any, ttl_seconds: float) -> CacheEntry:
        """Store a payload, evicting the oldest entries if over capacity."""
        entry = CacheEntry(
            key=key,
            payload=payload,
            stored_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            # Re-inserting moves the key to the newest end
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")
        return entry

    def restore(self, entry: CacheEntry) -> None:
        """Put back a previously peeked entry with its original timestamps."""
        with self._lock:
            self._entries.pop(entry.key, None)
            self._entries[entry.key] = entry
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), keys=list(self._entries.keys()))

    def __len__(self) -> int:
        return len(self._entries)
