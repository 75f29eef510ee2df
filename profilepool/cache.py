"""
Response cache for discovery queries.

Entries are keyed by the query parameters and expire according to the TTL
tier of the query "type". Trending and search results go stale in minutes,
curated quality pools are kept for longer.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

from profilepool.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTLS: Dict[str, float] = {
    "trending": 3 * 60,
    "active": 5 * 60,
    "quality": 15 * 60,
    "search": 2 * 60,
    "default": 10 * 60,
}

DEFAULT_MAX_ENTRIES = 100


def cache_key(params: Mapping[str, Any]) -> str:
    """Deterministic key: same parameters in any order give the same key."""
    return json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str)


class ResponseCache:
    """
    Thread-safe in-memory cache with per-type TTLs.

    Reads never modify the cache. Stale entries are swept when the cache is full.
    If the cache is still full after a sweep, the oldest entry is evicted.
    """

    def __init__(
        self,
        ttls: Optional[Mapping[str, float]] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttls: Dict[str, float] = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.evictions = 0

    def ttl_for(self, query_type: Optional[str]) -> float:
        if query_type and query_type in self.ttls:
            return self.ttls[query_type]
        return self.ttls["default"]

    def get(self, params: Mapping[str, Any]) -> Optional[Any]:
        # Read-only: stale entries stay in place until set() or sweep_expired()
        key = cache_key(params)
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        logger.debug("Cache hit for %s", key)
        return entry.payload

    def set(self, params: Mapping[str, Any], payload: Any) -> None:
        key = cache_key(params)
        query_type = str(params.get("type") or "default")
        ttl = self.ttl_for(query_type)
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._sweep_locked(now)
                if len(self._entries) >= self.max_entries:
                    oldest = min(self._entries, key=lambda k: self._entries[k].fetched_at)
                    del self._entries[oldest]
                    self.evictions += 1
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                fetched_at=now,
                query_type=query_type,
                ttl_s=ttl,
            )
        logger.debug("Cached %s (ttl %.0fs)", key, ttl)

    def invalidate(self, params: Mapping[str, Any]) -> bool:
        key = cache_key(params)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_type(self, query_type: str) -> int:
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.query_type == query_type]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.info("Invalidated %s cache entries of type %s", len(keys), query_type)
        return len(keys)

    def sweep_expired(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            fresh = sum(1 for e in self._entries.values() if e.is_fresh(now))
            return {
                "size": len(self._entries),
                "fresh": fresh,
                "max_entries": self.max_entries,
                "evictions": self.evictions,
            }
