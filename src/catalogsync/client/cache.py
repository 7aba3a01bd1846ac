"""Two-tier cache in front of expensive fetches.

This module provides:
- TieredCache: fast in-process tier plus durable key-value tier
- CacheEntry: fast-tier entry (never handed out to callers)
- CacheStats: hit/miss/save/eviction counters

Fast tier:
    Bounded dict. When full, the oldest 20% of entries by creation time are
    evicted before a new key is inserted. Reads do not refresh an entry, so a
    recently read but long-ago written entry is still evicted first.

Durable tier:
    "cache:<key>" holds the JSON value (zlib+base64 when larger than the
    compression threshold) and "cache_meta:<key>" holds
    {expires_at, created_at, compressed, size}. Expired entries are removed
    when read and counted as evictions. purge_expired() sweeps the whole
    namespace; it is never run implicitly.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from catalogsync.client.kvstore import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_MINUTES = 30.0
DEFAULT_MAX_ENTRIES = 500
DEFAULT_COMPRESSION_THRESHOLD = 1000  # bytes
EVICTION_FRACTION = 0.2

VALUE_PREFIX = "cache:"
META_PREFIX = "cache_meta:"


@dataclass
class CacheEntry:
    """A fast-tier cache entry."""

    key: str
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Running cache counters."""

    hits: int = 0
    misses: int = 0
    saves: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class TieredCache:
    """Cache with an in-process tier and a durable tier."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl_minutes: float = DEFAULT_TTL_MINUTES,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            store: Durable key-value store (None disables the durable tier).
            max_entries: Fast-tier capacity.
            default_ttl_minutes: TTL used when none is given.
            compression_threshold: Serialized size above which durable
                values are compressed.
            clock: Time source in seconds.
        """
        self._store = store
        self._fast: dict[str, CacheEntry] = {}
        self.max_entries = max(1, max_entries)
        self.default_ttl_minutes = default_ttl_minutes
        self.compression_threshold = compression_threshold
        self._clock = clock
        self.stats = CacheStats()

    # === Public API ===

    def get(
        self,
        key: str,
        compute_fn: Callable[[], T],
        *,
        ttl_minutes: float | None = None,
        force_refresh: bool = False,
        use_fast: bool = True,
        use_durable: bool = True,
    ) -> T:
        """Return a cached value, computing and storing it on a miss.

        Args:
            key: Cache key.
            compute_fn: Produces the value on a miss.
            ttl_minutes: Lifetime of a newly computed value.
            force_refresh: Skip lookups and recompute.
            use_fast: Use the in-process tier.
            use_durable: Use the durable tier.

        Returns:
            The cached or freshly computed value.
        """
        if not force_refresh:
            found, value = self.lookup(key, use_fast=use_fast, use_durable=use_durable)
            if found:
                return value  # type: ignore[no-any-return]
            self.stats.misses += 1
        else:
            logger.debug(f"Cache refresh forced for {key}")

        value = compute_fn()
        self.set(key, value, ttl_minutes, use_fast=use_fast, use_durable=use_durable)
        return value

    def lookup(
        self, key: str, *, use_fast: bool = True, use_durable: bool = True
    ) -> tuple[bool, Any]:
        """Look a key up in the requested tiers (fast first).

        Counts a hit when found; misses are counted by get().

        Returns:
            (found, value) tuple.
        """
        now = self._clock()

        if use_fast:
            entry = self._fast.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    self.stats.hits += 1
                    return True, entry.value
                del self._fast[key]
                self.stats.evictions += 1

        if use_durable and self._store is not None:
            found, value, meta = self._durable_get(key, now)
            if found:
                self.stats.hits += 1
                if use_fast:
                    self._fast_put(
                        CacheEntry(key, value, meta["created_at"], meta["expires_at"])
                    )
                return True, value

        return False, None

    def set(
        self,
        key: str,
        value: Any,
        ttl_minutes: float | None = None,
        *,
        use_fast: bool = True,
        use_durable: bool = True,
    ) -> None:
        """Store a value in the requested tiers."""
        ttl = self.default_ttl_minutes if ttl_minutes is None else ttl_minutes
        now = self._clock()
        expires_at = now + ttl * 60

        if use_fast:
            self._fast_put(CacheEntry(key, value, now, expires_at))
        if use_durable and self._store is not None:
            self._durable_put(key, value, now, expires_at)
        self.stats.saves += 1

    def delete(self, key: str) -> None:
        """Remove a key from both tiers."""
        self._fast.pop(key, None)
        if self._store is not None:
            self._store.delete(VALUE_PREFIX + key)
            self._store.delete(META_PREFIX + key)

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix from both tiers.

        Returns:
            Number of distinct keys removed.
        """
        keys = {key for key in self._fast if key.startswith(prefix)}
        if self._store is not None:
            keys.update(
                meta_key[len(META_PREFIX):]
                for meta_key in self._store.keys(META_PREFIX + prefix)
            )
        for key in keys:
            self.delete(key)
        return len(keys)

    def clear(self) -> None:
        """Clear the fast tier only."""
        self._fast.clear()

    def clear_all(self) -> int:
        """Clear both tiers (full scan of the durable namespace).

        Returns:
            Number of durable entries removed.
        """
        self._fast.clear()
        if self._store is None:
            return 0
        removed = 0
        for meta_key in self._store.keys(META_PREFIX):
            key = meta_key[len(META_PREFIX):]
            self._store.delete(VALUE_PREFIX + key)
            self._store.delete(meta_key)
            removed += 1
        # Values whose metadata went missing
        for value_key in self._store.keys(VALUE_PREFIX):
            self._store.delete(value_key)
        logger.info(f"Cleared cache ({removed} durable entries)")
        return removed

    def purge_expired(self) -> int:
        """Remove expired durable entries (full scan).

        Returns:
            Number of entries removed.
        """
        if self._store is None:
            return 0
        now = self._clock()
        removed = 0
        for meta_key in self._store.keys(META_PREFIX):
            key = meta_key[len(META_PREFIX):]
            meta = self._read_meta(key)
            if meta is None or now >= meta["expires_at"]:
                self._store.delete(VALUE_PREFIX + key)
                self._store.delete(meta_key)
                self.stats.evictions += 1
                removed += 1
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    def durable_stats(self) -> dict[str, int]:
        """Summarize the durable namespace (full scan, no eviction)."""
        summary = {"entries": 0, "expired": 0, "compressed": 0, "bytes": 0}
        if self._store is None:
            return summary
        now = self._clock()
        for meta_key in self._store.keys(META_PREFIX):
            meta = self._read_meta(meta_key[len(META_PREFIX):])
            summary["entries"] += 1
            if meta is None or now >= meta["expires_at"]:
                summary["expired"] += 1
                continue
            summary["compressed"] += 1 if meta.get("compressed") else 0
            summary["bytes"] += int(meta.get("size", 0))
        return summary

    def contains_fast(self, key: str) -> bool:
        """Check fast-tier membership without touching stats."""
        return key in self._fast

    def get_stats(self) -> dict[str, Any]:
        """Counters plus computed hit rate."""
        return {
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "saves": self.stats.saves,
            "evictions": self.stats.evictions,
            "hit_rate": self.stats.hit_rate,
            "fast_entries": len(self._fast),
        }

    # === Fast tier ===

    def _fast_put(self, entry: CacheEntry) -> None:
        if entry.key not in self._fast and len(self._fast) >= self.max_entries:
            self._evict_oldest()
        self._fast[entry.key] = entry

    def _evict_oldest(self) -> None:
        """Evict the oldest 20% (at least one) of fast entries by creation time."""
        count = max(1, math.floor(len(self._fast) * EVICTION_FRACTION))
        oldest = sorted(self._fast.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            del self._fast[entry.key]
        self.stats.evictions += len(oldest)
        logger.debug(f"Evicted {len(oldest)} cache entries")

    # === Durable tier ===

    def _durable_put(self, key: str, value: Any, created_at: float, expires_at: float) -> None:
        assert self._store is not None
        serialized = json.dumps(value, default=str)
        size = len(serialized.encode("utf-8"))
        compressed = size > self.compression_threshold
        stored = (
            base64.b64encode(zlib.compress(serialized.encode("utf-8"))).decode("ascii")
            if compressed
            else serialized
        )
        meta = {
            "expires_at": expires_at,
            "created_at": created_at,
            "compressed": compressed,
            "size": size,
        }
        self._store.set(VALUE_PREFIX + key, stored)
        self._store.set(META_PREFIX + key, json.dumps(meta))

    def _read_meta(self, key: str) -> dict[str, Any] | None:
        assert self._store is not None
        raw = self._store.get(META_PREFIX + key)
        if raw is None:
            return None
        try:
            meta = json.loads(raw)
            float(meta["expires_at"])
            float(meta["created_at"])
        except (ValueError, KeyError, TypeError):
            return None
        return dict(meta)

    def _durable_get(self, key: str, now: float) -> tuple[bool, Any, dict[str, Any]]:
        assert self._store is not None
        meta = self._read_meta(key)
        if meta is None:
            return False, None, {}

        if now >= meta["expires_at"]:
            self._store.delete(VALUE_PREFIX + key)
            self._store.delete(META_PREFIX + key)
            self.stats.evictions += 1
            return False, None, {}

        raw = self._store.get(VALUE_PREFIX + key)
        if raw is None:
            return False, None, {}
        try:
            if meta.get("compressed"):
                raw = zlib.decompress(base64.b64decode(raw)).decode("utf-8")
            value = json.loads(raw)
        except (ValueError, zlib.error) as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            self.delete(key)
            return False, None, {}
        return True, value, meta
