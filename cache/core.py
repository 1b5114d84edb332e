"""
Core caching functionality for zpool ledger reads.

This module provides the TTL cache store that sits in front of slow,
rate-limited and signature-gated chain reads. Entries expire lazily on
read and are swept periodically; the store is bounded in size and its
full contents are written to durable storage after every mutation. Inside
a running event loop, backends with an awaitable save receive one
coalesced write per burst of mutations instead.
"""
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

from .monitoring import CacheMonitor, get_monitor
from .storage import CacheStorage, MemoryStorage, StorageError

logger = structlog.get_logger()

# Fraction of max_size dropped when the store is full
EVICTION_FRACTION = 0.1

_MISSING = object()


@dataclass
class CacheEntry:
    """A cached value and the bookkeeping needed to expire it."""
    key: str
    data: Any
    inserted_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.inserted_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {'data': self.data, 'inserted_at': self.inserted_at, 'ttl': self.ttl}

    @classmethod
    def from_dict(cls, key: str, raw: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            key=key,
            data=raw['data'],
            inserted_at=float(raw['inserted_at']),
            ttl=float(raw['ttl']),
        )


class CacheStore:
    """
    TTL key/value store with bounded size and write-through persistence.

    The in-memory map is authoritative for the session. Storage failures
    are logged and never raised to callers.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 30.0,
        cleanup_interval: float = 60.0,
        storage: Optional[CacheStorage] = None,
        clock: Callable[[], float] = time.time,
        monitor: Optional[CacheMonitor] = None,
    ):
        """
        Initialize the store and load the persisted snapshot.

        Args:
            max_size: Maximum number of entries held at once
            default_ttl: Lifetime in seconds for entries set without a ttl
            cleanup_interval: Seconds between background expiry sweeps
            storage: Durable snapshot backend, in-memory if omitted
            clock: Wall-clock source; injectable for simulated time
            monitor: Metrics sink
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._cache: Dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._cleanup_interval = cleanup_interval
        self._storage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._monitor = monitor or get_monitor()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._dirty: Optional[str] = None
        self._hits = 0
        self._misses = 0

        self._load()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """
        Set a value in the cache.

        Args:
            key: Cache key
            data: Value to cache
            ttl: Time-to-live in seconds, or None to use the default
        """
        if len(self._cache) >= self._max_size:
            self._evict_oldest()

        entry_ttl = ttl if ttl is not None else self._default_ttl
        self._cache[key] = CacheEntry(key=key, data=data, inserted_at=self._clock(), ttl=entry_ttl)
        self._persist("set")
        self._monitor.update_size(len(self._cache))
        logger.debug("cache_set", key=key, ttl=entry_ttl)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key to retrieve
            default: Returned when the key is absent or expired

        Returns:
            The cached value or ``default``
        """
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            self._monitor.record_miss(key)
            return default

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._persist("expire")
            self._misses += 1
            self._monitor.record_miss(key)
            self._monitor.record_expirations(1)
            self._monitor.update_size(len(self._cache))
            logger.debug("cache_expired", key=key)
            return default

        self._hits += 1
        self._monitor.record_hit(key)
        logger.debug("cache_hit", key=key)
        return entry.data

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        return self.get(key, _MISSING) is not _MISSING

    def delete(self, key: str) -> bool:
        """
        Delete a key from the cache.

        Returns:
            True if deleted, False if the key was not present
        """
        if key not in self._cache:
            return False
        del self._cache[key]
        self._persist("delete")
        self._monitor.record_invalidations("delete", 1)
        self._monitor.update_size(len(self._cache))
        logger.debug("cache_deleted", key=key)
        return True

    def clear(self) -> int:
        """
        Remove every entry.

        Returns:
            Number of entries cleared
        """
        count = len(self._cache)
        self._cache.clear()
        self._persist("clear")
        self._monitor.record_invalidations("clear", count)
        self._monitor.update_size(0)
        logger.info("cache_cleared", entries=count)
        return count

    def clear_pattern(self, pattern: str) -> int:
        """
        Delete every key that contains ``pattern`` as a substring.

        Used to drop all entries of a principal at once. The snapshot is
        written once for the whole batch.

        Returns:
            Number of entries removed
        """
        return self._remove_where(lambda key: pattern in key, "pattern", pattern)

    def clear_prefix(self, prefix: str) -> int:
        """Delete every key that starts with ``prefix``."""
        return self._remove_where(lambda key: key.startswith(prefix), "prefix", prefix)

    def _remove_where(self, predicate: Callable[[str], bool], reason: str, pattern: str) -> int:
        to_delete = [key for key in self._cache if predicate(key)]
        for key in to_delete:
            del self._cache[key]
        if to_delete:
            self._persist(f"clear_{reason}")
            self._monitor.record_invalidations(reason, len(to_delete))
            self._monitor.update_size(len(self._cache))
            logger.info("cache_pattern_cleared", match=reason, pattern=pattern, entries=len(to_delete))
        return len(to_delete)

    def cleanup(self) -> int:
        """
        Remove all expired entries regardless of access.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            self._persist("cleanup")
            self._monitor.record_expirations(len(expired))
            self._monitor.update_size(len(self._cache))
            logger.debug("cache_cleanup", removed=len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Expired entries are swept first, so the listing only shows live keys.

        Returns:
            Dictionary with size, bounds, hit counters and per-entry age/ttl
        """
        self.cleanup()
        now = self._clock()
        total_requests = self._hits + self._misses
        entries: List[Dict[str, Any]] = [
            {'key': key, 'age': entry.age(now), 'ttl': entry.ttl}
            for key, entry in self._cache.items()
        ]
        return {
            'size': len(self._cache),
            'max_size': self._max_size,
            'hits': self._hits,
            'misses': self._misses,
            'hit_ratio': self._hits / total_requests if total_requests > 0 else 0.0,
            'entries': entries,
        }

    def start_cleanup(self) -> asyncio.Task:
        """Start the background sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        """Cancel the background sweep and wait for it to finish."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def flush(self) -> None:
        """Wait until every pending write-behind save has been issued."""
        while self._flush_task is not None and not self._flush_task.done():
            await asyncio.shield(self._flush_task)

    async def close(self) -> None:
        """Stop the sweep, flush pending writes and release the storage backend."""
        await self.stop_cleanup()
        await self.flush()
        await self._storage.close()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            try:
                removed = self.cleanup()
            except Exception as e:
                logger.error("cache_cleanup_failed", error=str(e))
                continue
            if removed:
                logger.info("cache_sweep", removed=removed)

    def _evict_oldest(self) -> None:
        """Drop the oldest tenth of max_size, by insertion time."""
        to_remove = math.ceil(self._max_size * EVICTION_FRACTION)
        oldest = sorted(self._cache.values(), key=lambda entry: entry.inserted_at)[:to_remove]
        for entry in oldest:
            del self._cache[entry.key]
        self._monitor.record_evictions(len(oldest))
        logger.info("cache_evicted", entries=len(oldest), max_size=self._max_size)

    def _load(self) -> None:
        """Load the persisted snapshot, skipping already expired entries."""
        try:
            snapshot = self._storage.load()
        except StorageError as e:
            logger.warning("cache_load_failed", error=str(e))
            self._monitor.record_persist_failure("load")
            return

        now = self._clock()
        loaded = 0
        for key, raw in snapshot.items():
            try:
                entry = CacheEntry.from_dict(key, raw)
            except (KeyError, TypeError, ValueError):
                logger.warning("cache_load_skipped_entry", key=key)
                continue
            if entry.is_expired(now):
                continue
            self._cache[key] = entry
            loaded += 1

        # Snapshots from a larger store keep their newest entries
        if len(self._cache) > self._max_size:
            newest = sorted(self._cache.values(), key=lambda entry: entry.inserted_at)[-self._max_size:]
            self._cache = {entry.key: entry for entry in newest}

        self._monitor.update_size(len(self._cache))
        logger.info("cache_loaded", entries=len(self._cache), discarded=len(snapshot) - loaded)

    def _snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in self._cache.items()}

    def _persist(self, operation: str) -> None:
        if self._storage.supports_async:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                # Coalesce the burst into one write issued after the current step
                self._dirty = operation
                if self._flush_task is None or self._flush_task.done():
                    self._flush_task = loop.create_task(self._flush())
                return

        try:
            self._storage.save(self._snapshot())
        except StorageError as e:
            self._persist_failed(operation, e)

    async def _flush(self) -> None:
        while self._dirty is not None:
            operation, self._dirty = self._dirty, None
            try:
                await self._storage.save_async(self._snapshot())
            except StorageError as e:
                self._persist_failed(operation, e)

    def _persist_failed(self, operation: str, error: StorageError) -> None:
        self._monitor.record_persist_failure(operation)
        logger.warning("cache_persist_failed", operation=operation, error=str(error))
