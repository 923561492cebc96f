"""In-memory TTL cache used for resolved policies and exemption decisions.

Thread-safe, LRU-bounded, with a secondary tag index so that every entry
derived from a given policy (or limit key) can be dropped in O(1) per entry
instead of scanning keys by prefix.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Callable, Hashable, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheItem:
    """Container for cached values with expiration metadata."""

    value: Any
    expires_at: float
    tags: frozenset[Hashable]


class SimpleTTLCache:
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Entries are replaced whole on every write; readers always get the value
    that was stored, never a partially updated one.

    Attributes:
        ttl_seconds: Time-to-live applied to all entries.
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int | None = 1024,
        *,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._name = name
        self._store: OrderedDict[Hashable, CacheItem] = OrderedDict()
        self._tag_index: dict[Hashable, set[Hashable]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SimpleTTLCache(name={self._name!r}, ttl_seconds={self._ttl}, "
            f"max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Retrieve a cached value if it exists and is not expired.

        Args:
            key: Cache key.
            default: Returned on a miss (lets callers cache ``None``).

        Returns:
            Cached value or ``default`` if not found/expired.
        """

        with self._lock:
            item = self._store.get(key)
            if item is None:
                self._misses += 1
                return default

            if self._is_expired(item):
                self._evict_single(key)
                self._misses += 1
                logger.debug(
                    "cache.miss",
                    extra={"cache": self._name, "reason": "expired"},
                )
                return default

            self._hits += 1
            self._store.move_to_end(key)  # mark as recently used
            return item.value

    def set(self, key: Hashable, value: Any, *, tags: Iterable[Hashable] = ()) -> None:
        """Store a value with TTL, evicting as needed.

        Args:
            key: Cache key.
            value: Value to store. Should be immutable.
            tags: Secondary index entries used by ``invalidate_tag``.
        """

        if self._ttl <= 0:
            return

        with self._lock:
            self._unindex(key)
            item = CacheItem(
                value=value,
                expires_at=self._clock() + self._ttl,
                tags=frozenset(tags),
            )
            self._store[key] = item
            self._store.move_to_end(key)
            for tag in item.tags:
                self._tag_index.setdefault(tag, set()).add(key)
            self._evict_if_over_capacity_locked()

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._evict_single(key)

    def invalidate_tag(self, tag: Hashable) -> int:
        """Drop every entry stored under ``tag``.

        Returns:
            Number of entries removed.
        """

        with self._lock:
            keys = self._tag_index.pop(tag, set())
            removed = 0
            for key in keys:
                if key in self._store:
                    self._evict_single(key)
                    removed += 1
        if removed:
            logger.debug(
                "cache.invalidated",
                extra={"cache": self._name, "entries": removed},
            )
        return removed

    def purge_expired(self) -> int:
        """Remove expired entries; returns how many were dropped."""

        with self._lock:
            now = self._clock()
            expired_keys = [k for k, item in self._store.items() if item.expires_at <= now]
            for key in expired_keys:
                self._evict_single(key)
            return len(expired_keys)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._tag_index.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | float | str | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "name": self._name,
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _unindex(self, key: Hashable) -> None:
        item = self._store.get(key)
        if item is None:
            return
        for tag in item.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]

    def _evict_single(self, key: Hashable) -> None:
        if key in self._store:
            self._unindex(key)
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # The first entry is the least recently used one
            key = next(iter(self._store))
            self._evict_single(key)

    def _is_expired(self, item: CacheItem) -> bool:
        return self._clock() >= item.expires_at


def build_cache_key(*parts: str | None, salt: str | None = None) -> str:
    """Build a stable, fixed-length key from identity parts.

    Args:
        parts: Identity components; ``None`` is encoded distinctly from "".
        salt: Optional salt to partition keys.

    Returns:
        Hex-encoded SHA-256 digest string.
    """

    hasher = sha256()
    for part in parts:
        hasher.update(b"\x00" if part is None else b"\x01" + part.encode())
        hasher.update(b"\x1f")
    if salt:
        hasher.update(salt.encode())
    return hasher.hexdigest()
