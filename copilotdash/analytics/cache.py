"""Time- and size-bounded in-process cache used by the analytics engine."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from copilotdash import config


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    key: str


class TTLCache:
    """Insertion-ordered cache with per-entry TTL and oldest-first eviction.

    Entries are only ever added whole or dropped; there is no partial update.
    """

    def __init__(
        self,
        ttl_seconds: float = config.CACHE_TTL_SECONDS,
        max_entries: int = config.MAX_CACHE_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        # Membership checks leave the hit and miss counters alone.
        entry = self._entries.get(key)
        return entry is not None and not self._expired(entry)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp > self.ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry):
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.data

    def set(self, key: str, data: Any) -> None:
        # Re-setting a key moves it to the back of the eviction order.
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock(), key=key)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)
