"""
Bounded in-memory cache store with per-entry TTL and stale retrieval.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Tuple


@dataclass(frozen=True)
class CacheEntry:
    """Raw origin payload plus the response metadata needed to revalidate it."""

    body: bytes
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    content_type: Optional[str] = None
    status_code: Optional[int] = None


@dataclass
class _Slot:
    entry: CacheEntry
    stored_at: float
    ttl: float

    def expires_at(self) -> float:
        return self.stored_at + self.ttl


class CacheStore:
    """LRU-bounded key -> entry store with lazy TTL expiry.

    Expiry is judged at read time from (stored_at, ttl, now); nothing sweeps
    in the background. Expired entries stay retrievable through
    ``get_allowing_stale`` until they are evicted or the store is cleared.
    """

    def __init__(self, max_entries: int = 500, *, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._slots: "OrderedDict[Hashable, _Slot]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._slots

    def get(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the entry only while it is still fresh."""
        with self._lock:
            slot = self._touch(key)
            if slot is None or slot.expires_at() <= self._clock():
                return None
            return slot.entry

    def get_allowing_stale(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the entry regardless of TTL expiry."""
        with self._lock:
            slot = self._touch(key)
            return slot.entry if slot is not None else None

    def remaining_freshness(self, key: Hashable) -> float:
        """Seconds until the entry expires; zero or negative when expired or absent."""
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return 0.0
            return slot.expires_at() - self._clock()

    def set(self, key: Hashable, entry: CacheEntry, ttl: float) -> None:
        """Store an entry and (re)start its freshness window."""
        with self._lock:
            if key in self._slots:
                self._slots.move_to_end(key)
            else:
                while len(self._slots) >= self.max_entries:
                    self._slots.popitem(last=False)
            self._slots[key] = _Slot(entry=entry, stored_at=self._clock(), ttl=ttl)

    def update_entry(self, key: Hashable, entry: CacheEntry) -> bool:
        """Replace an existing entry without changing its expiry.

        Returns False when the key is not present.
        """
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                return False
            slot.entry = entry
            return True

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def keys(self) -> Tuple[Hashable, ...]:
        """Keys ordered from least to most recently used."""
        with self._lock:
            return tuple(self._slots.keys())

    def _touch(self, key: Hashable) -> Optional[_Slot]:
        slot = self._slots.get(key)
        if slot is not None:
            self._slots.move_to_end(key)
        return slot
