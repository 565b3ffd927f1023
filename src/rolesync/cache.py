"""In-process caches.

``LastAppliedCache`` remembers the last desired-state signature applied to
each member so that redundant change events can be skipped. It is an
optimisation only: the member's role set is always re-read before any
write, and nothing here survives a restart.

``TtlCache`` holds a single value that expires, used for the directory's
role hierarchy.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with expiration time."""

    value: T
    expires_at: float


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    size: int = 0

    def as_dict(self) -> dict[str, int]:
        """Return stats as a dictionary."""
        return {"hits": self.hits, "misses": self.misses, "size": self.size}


@dataclass
class LastAppliedCache:
    """Entity id -> signature of the last successfully applied desired state."""

    _entries: dict[str, str] = field(init=False, default_factory=dict)
    _hits: int = field(init=False, default=0)
    _misses: int = field(init=False, default=0)

    def matches(self, entity_id: str, signature: str) -> bool:
        """Return True if ``signature`` was the last one applied to the entity."""
        if self._entries.get(entity_id) == signature:
            self._hits += 1
            return True
        self._misses += 1
        return False

    def get(self, entity_id: str) -> str | None:
        return self._entries.get(entity_id)

    def record(self, entity_id: str, signature: str) -> None:
        self._entries[entity_id] = signature

    def invalidate(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))


@dataclass
class TtlCache(Generic[T]):
    """
    Single async-loaded value with TTL expiration.

    Concurrent callers share one fetch. ``ttl_seconds=0`` disables caching.
    """

    ttl_seconds: float = 60.0
    _entry: CacheEntry[T] | None = field(init=False, default=None)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    async def get(self, fetch_fn: Callable[[], Awaitable[T]]) -> T:
        if self.ttl_seconds <= 0:
            return await fetch_fn()

        async with self._lock:
            if self._entry is not None and time.monotonic() <= self._entry.expires_at:
                return self._entry.value
            value = await fetch_fn()
            self._entry = CacheEntry(value=value, expires_at=time.monotonic() + self.ttl_seconds)
            return value

    def invalidate(self) -> None:
        self._entry = None
