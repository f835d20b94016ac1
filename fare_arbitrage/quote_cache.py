"""In-process TTL cache of provider quotes keyed by strategy label and search."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .models import Offer, SearchRequest

logger = logging.getLogger(__name__)

QUOTE_TTL_S = 30 * 60


def cache_key(label: str, request: SearchRequest) -> str:
    """Key built from the strategy label and every price-affecting field."""
    return ":".join(
        [
            label,
            request.origin,
            request.destination,
            request.departure_date.isoformat(),
            request.return_date.isoformat() if request.return_date else "one-way",
            str(request.adults),
            str(request.children),
            str(request.infants),
            request.cabin_class.value,
            request.currency,
        ]
    )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    offers: Tuple[Offer, ...]
    inserted_at: float


class QuoteCache:
    """Last-write-wins TTL cache with lazy eviction and a size bound."""

    def __init__(
        self,
        ttl_s: float = QUOTE_TTL_S,
        *,
        max_entries: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at < self.ttl_s

    def get(self, key: str) -> Optional[Tuple[Offer, ...]]:
        """Return the cached offers for *key*, or ``None`` on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._fresh(entry, self._clock()):
                self.misses += 1
                return None
            self.hits += 1
        logger.debug("Cache hit for %s", key)
        return entry.offers

    def put(self, key: str, offers) -> None:
        """Store *offers* under *key*, overwriting any previous entry."""
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._sweep_locked(now)
                if len(self._entries) >= self.max_entries:
                    oldest = min(self._entries.values(), key=lambda e: e.inserted_at)
                    del self._entries[oldest.key]
            self._entries[key] = CacheEntry(key, tuple(offers), now)

    def sweep(self) -> int:
        """Drop stale entries; return how many were removed."""
        with self._lock:
            removed = self._sweep_locked(self._clock())
        if removed:
            logger.info("Quote cache sweep removed %d stale entries", removed)
        return removed

    def _sweep_locked(self, now: float) -> int:
        stale = [k for k, e in self._entries.items() if not self._fresh(e, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "ttl_s": self.ttl_s,
        }


__all__ = ["CacheEntry", "QuoteCache", "cache_key"]
