# flowmend/repair/cache.py
"""
Content-addressed cache of repair outcomes: TTL (checked lazily on lookup)
plus LRU eviction at capacity. One short lock guards every operation.
Outcomes are deep-copied on the way in and out; callers never share state with an entry.
"""
from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Protocol

from flowmend.errors import CacheError
from flowmend.model.results import CacheEntry, RepairOutcome
from flowmend.utils.io import content_hash
from flowmend.utils.logger import get_logger

log = get_logger("cache")

DEFAULT_TTL_MINUTES = 60.0
DEFAULT_MAX_SIZE = 100


def document_hash(document: Any) -> str:
    """Cache key: sha256 of the canonical (sorted-key, compact) serialization."""
    return content_hash(document)


class RepairCache(Protocol):
    def get(self, key: str) -> Optional[RepairOutcome]:
        ...

    def set(self, key: str, outcome: RepairOutcome) -> None:
        ...

    def stats(self) -> Dict[str, Any]:
        ...

    def clear(self) -> None:
        ...


class ValidationCache:
    def __init__(self, ttl_minutes: float = DEFAULT_TTL_MINUTES, max_size: int = DEFAULT_MAX_SIZE,
                 clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.ttl = ttl_minutes * 60.0
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[RepairOutcome]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() - entry.created_at > self.ttl:
                del self._entries[key]
                self._misses += 1
                log.debug("cache entry %s expired", key[:12])
                return None
            if entry.result is None:
                raise CacheError(f"cache entry {key[:12]} carries no outcome")
            self._entries.move_to_end(key)
            self._hits += 1
            return copy.deepcopy(entry.result)

    def set(self, key: str, outcome: RepairOutcome) -> None:
        if outcome is None:
            raise CacheError("refusing to cache an empty outcome")
        stored = copy.deepcopy(outcome)
        with self._lock:
            self._entries[key] = CacheEntry(key=key, result=stored, created_at=self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                log.debug("cache evicted %s", evicted[:12])

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hitRate": round(self._hits / total * 100, 1) if total else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        log.info("validation cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_shared: Optional[ValidationCache] = None
_shared_lock = threading.Lock()


def get_validation_cache(ttl_minutes: float = DEFAULT_TTL_MINUTES, max_size: int = DEFAULT_MAX_SIZE) -> ValidationCache:
    """Process-wide cache; the arguments only apply on first use."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = ValidationCache(ttl_minutes=ttl_minutes, max_size=max_size)
        return _shared
