"""In-process freshness cache for resolved live-metadata records.

Entries are keyed by ``(target kind, target value, requested field)`` so that
a status-only read and a full-metadata read of the same target can carry
different TTLs.  The TTL is always chosen by the caller.

Storage is a ``cachetools.TLRUCache`` whose time-to-use function reads each
entry's own ``ttl_seconds``.  Expiry is checked lazily on every read;
:meth:`FreshnessCache.sweep` and the optional
:meth:`FreshnessCache.run_sweeper` background loop only reclaim memory.
cachetools caches are not thread-safe, so every access goes through a
``threading.Lock``.

Concurrent misses for the same key are collapsed into one underlying
resolution (single-flight).  The resolution runs in its own task: a caller
that is cancelled stops waiting, but the remaining callers still get the
result.  The task is only cancelled once nobody is waiting for it.

Typical usage::

    cache = FreshnessCache()
    key = cache_key(target, FieldSet.STATUS)
    record = await cache.get_or_resolve(key, lambda: resolve(target), ttl=30)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from cachetools import TLRUCache

from live_observatory.core.schemas.live_metadata import FieldSet
from live_observatory.core.targets import Target

logger = logging.getLogger(__name__)

_KEY_NAMESPACE = "live"

DEFAULT_MAXSIZE = 10_000


def cache_key(target: Target, field: FieldSet | str) -> str:
    """Build the deterministic cache key for *target* and *field*.

    Returns:
        A key of the form ``live:{kind}:{value}:{field}``, e.g.
        ``live:video:dQw4w9WgXcQ:status``.
    """
    field_value = field.value if isinstance(field, FieldSet) else str(field)
    return f"{target_prefix(target)}{field_value}"


def target_prefix(target: Target) -> str:
    """Return the key prefix shared by every field of *target*."""
    return f"{_KEY_NAMESPACE}:{target.kind.value}:{target.value}:"


@dataclass(frozen=True)
class CacheEntry:
    """One stored record.  Never mutated; overwritten on the next write.

    Attributes:
        key: Cache key.
        record: The stored value (normally a ``LiveMetadataRecord``).
        stored_at: Clock reading at write time.
        ttl_seconds: Lifetime chosen by the writer.
    """

    key: str
    record: Any
    stored_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds


def _entry_expiry(_key: str, entry: CacheEntry, now: float) -> float:
    return now + entry.ttl_seconds


class _EntryStore(TLRUCache):
    """TLRUCache that counts what it drops, expired or over capacity."""

    def __init__(self, maxsize: int, timer: Callable[[], float]) -> None:
        super().__init__(maxsize=maxsize, ttu=_entry_expiry, timer=timer)
        self.evictions = 0

    def expire(self, now: Optional[float] = None) -> list[tuple[str, CacheEntry]]:
        expired = super().expire(now)
        self.evictions += len(expired)
        return expired

    def popitem(self) -> tuple[str, CacheEntry]:
        item = super().popitem()
        self.evictions += 1
        return item


@dataclass
class _Flight:
    """A resolution in progress and the number of callers awaiting it."""

    task: asyncio.Task[Any]
    waiters: int = 0


class FreshnessCache:
    """TTL cache with lazy expiry and single-flight resolution.

    Args:
        clock: Monotonic clock returning seconds.  Injectable for tests.
        maxsize: Maximum number of stored entries.  When full, the least
            recently used entry is dropped first.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = DEFAULT_MAXSIZE,
    ) -> None:
        self._clock = clock
        self._entries = _EntryStore(maxsize=maxsize, timer=clock)
        self._in_flight: dict[str, _Flight] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._coalesced = 0

    # ------------------------------------------------------------------
    # Basic operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the fresh entry for *key*, or ``None`` on a miss.

        Expired entries are evicted before the lookup, so an expired entry
        counts as a miss.
        """
        with self._lock:
            self._entries.expire()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def set(self, key: str, record: Any, ttl: float) -> CacheEntry:
        """Store *record* under *key* for *ttl* seconds (last writer wins).

        Raises:
            ValueError: If *ttl* is not positive.
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl!r}")
        entry = CacheEntry(key=key, record=record, stored_at=self._clock(), ttl_seconds=ttl)
        with self._lock:
            self._entries[key] = entry
            self._sets += 1
        logger.debug("cache: set key=%s ttl=%.1fs", key, ttl)
        return entry

    def invalidate(self, key: str) -> bool:
        """Drop *key*.  Returns ``True`` when a fresh entry was removed."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("cache: invalidated key=%s", key)
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with *prefix*.  Returns the count removed."""
        with self._lock:
            self._entries.expire()
            doomed = [key for key in list(self._entries.keys()) if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("cache: invalidated %d keys with prefix=%s", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # ------------------------------------------------------------------
    # Single-flight resolution
    # ------------------------------------------------------------------

    async def get_or_resolve(
        self,
        key: str,
        resolve_fn: Callable[[], Awaitable[Any]],
        ttl: float,
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """Return the cached value for *key*, resolving it on a miss.

        Only one resolution per key runs at a time.  Callers arriving while
        a resolution is in flight await its outcome instead of starting
        their own.  Cancelling one caller does not affect the others.

        Args:
            key: Cache key.
            resolve_fn: Zero-argument coroutine function producing the value.
            ttl: Lifetime of the stored value in seconds.
            should_cache: Predicate deciding whether a resolved value is
                stored.  ``None`` stores everything.

        Returns:
            The cached or freshly resolved value.

        Raises:
            Exception: Whatever ``resolve_fn`` raised.  Failures are never
                cached and are delivered to every coalesced caller.
        """
        entry = self.get(key)
        if entry is not None:
            return entry.record

        with self._lock:
            flight = self._in_flight.get(key)
            if flight is None or flight.task.done():
                task = asyncio.create_task(
                    self._resolve_and_store(key, resolve_fn, ttl, should_cache),
                    name=f"resolve:{key}",
                )
                task.add_done_callback(functools.partial(self._forget_flight, key))
                flight = _Flight(task=task)
                self._in_flight[key] = flight
            else:
                self._coalesced += 1
                logger.debug("cache: coalesced onto in-flight resolution key=%s", key)
            flight.waiters += 1

        try:
            return await asyncio.shield(flight.task)
        finally:
            with self._lock:
                flight.waiters -= 1
                abandoned = flight.waiters == 0 and not flight.task.done()
            if abandoned:
                logger.debug("cache: no callers left, cancelling resolution key=%s", key)
                flight.task.cancel()

    async def _resolve_and_store(
        self,
        key: str,
        resolve_fn: Callable[[], Awaitable[Any]],
        ttl: float,
        should_cache: Optional[Callable[[Any], bool]],
    ) -> Any:
        value = await resolve_fn()
        if should_cache is None or should_cache(value):
            self.set(key, value, ttl)
        return value

    def _forget_flight(self, key: str, task: asyncio.Task[Any]) -> None:
        # Runs even for a task cancelled before its first step.
        with self._lock:
            flight = self._in_flight.get(key)
            if flight is not None and flight.task is task:
                del self._in_flight[key]

    async def cancel_in_flight(self) -> int:
        """Cancel every running resolution and wait for them to finish."""
        with self._lock:
            tasks = [flight.task for flight in self._in_flight.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Evict every expired entry.  Returns the number evicted."""
        with self._lock:
            expired = self._entries.expire()
        if expired:
            logger.debug("cache: sweep evicted %d entries", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Call :meth:`sweep` every *interval* seconds until cancelled."""
        logger.info("cache: sweeper started interval=%.1fs", interval)
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep()
        finally:
            logger.info("cache: sweeper stopped")

    def stats(self) -> dict[str, int]:
        with self._lock:
            self._entries.expire()
            return {
                "size": len(self._entries),
                "maxsize": int(self._entries.maxsize),
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "evictions": self._entries.evictions,
                "coalesced": self._coalesced,
                "in_flight": len(self._in_flight),
            }

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
