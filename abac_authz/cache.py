"""
Attribute map cache.

Bounded LRU cache with a fixed time-to-live for storage-derived attribute
maps, keyed by ``(subject_id, resource_id, action_name)``. The clock is
injectable so expiry can be tested deterministically. Cached maps are
copied on the way in and on the way out.
"""
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import ConfigurationError
from .models import AttributeMap

NO_RESOURCE = "__no_resource__"

CacheKey = Tuple[str, str, str]


@dataclass
class CacheMetrics:
    """Cache counters."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


@dataclass
class CacheEntry:
    """Cached attribute map with its expiry time."""
    attributes: AttributeMap
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class AttributeCache:
    """LRU + TTL cache of attribute maps."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None
    ):
        if max_size < 1:
            raise ConfigurationError("cache max_size must be at least 1", config_key="cache.max_size")
        if ttl_seconds <= 0:
            raise ConfigurationError("cache ttl_seconds must be positive", config_key="cache.ttl_seconds")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self.metrics = CacheMetrics()

    @staticmethod
    def make_key(subject_id: str, resource_id: Optional[str], action_name: str) -> CacheKey:
        return (subject_id, resource_id or NO_RESOURCE, action_name)

    def get(
        self,
        subject_id: str,
        resource_id: Optional[str],
        action_name: str
    ) -> Optional[AttributeMap]:
        """Return a copy of the cached map, or ``None`` on miss or expiry."""
        key = self.make_key(subject_id, resource_id, action_name)
        entry = self._entries.get(key)
        if entry is None:
            self.metrics.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.metrics.expirations += 1
            self.metrics.misses += 1
            return None

        self._entries.move_to_end(key)
        self.metrics.hits += 1
        return dict(entry.attributes)

    def put(
        self,
        subject_id: str,
        resource_id: Optional[str],
        action_name: str,
        attributes: AttributeMap
    ) -> None:
        key = self.make_key(subject_id, resource_id, action_name)
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
            self.metrics.evictions += 1
        self._entries[key] = CacheEntry(
            attributes=dict(attributes),
            expires_at=self._clock() + self.ttl_seconds
        )

    def invalidate(self, subject_id: Optional[str] = None, resource_id: Optional[str] = None) -> int:
        """
        Drop entries for a subject and/or resource; with no arguments, clear
        the cache. Returns the number of entries removed.
        """
        if subject_id is None and resource_id is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed

        doomed = [
            key for key in self._entries
            if (subject_id is None or key[0] == subject_id)
            and (resource_id is None or key[1] == resource_id)
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.metrics.hits,
            "misses": self.metrics.misses,
            "evictions": self.metrics.evictions,
            "expirations": self.metrics.expirations,
            "hit_rate": self.metrics.hit_rate,
        }
