"""
In-memory freshness cache for the ingest and read paths.

Holds, per process:
- the last accepted update time per vehicle (rate limiting, no TTL)
- the most recent location per vehicle (read fast path, 15s TTL)
- the active-vehicle list snapshot (30s TTL)
- vehicle status (saves a registry read per ping, 60s TTL)

Each kind lives in its own region with its own lock, so ingest for one
vehicle never waits on reads of the active list. Expiry is lazy on read,
plus explicit invalidation on state changes and a periodic sweep that drops
anything older than twice its TTL.

The cache is a pure optimization: a miss always falls back to storage and
nothing here raises to callers.

Memory budget: bounded by active-vehicle cardinality (low thousands).
A size-capped eviction policy would be needed if that stops holding.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional

from fleettrack.config import config

logger = logging.getLogger(__name__)

SINGLETON = '__all__'


class CacheKind(str, Enum):
    """Cache regions. Each has its own TTL class."""
    LAST_ACCEPTED = 'last_accepted'
    LATEST_LOCATION = 'latest_location'
    ACTIVE_LIST = 'active_list'
    VEHICLE = 'vehicle'


@dataclass
class CacheEntry:
    """A cached value and the time it was stored."""
    value: Any
    cached_at: float

    def age(self, now: float) -> float:
        return now - self.cached_at


class _Region:
    """One dict of entries guarded by its own lock."""

    def __init__(self, ttl: Optional[float]):
        self.ttl = ttl
        self.entries: Dict[Hashable, CacheEntry] = {}
        self.lock = threading.RLock()


class FreshnessCache:
    """
    Thread-safe, TTL-bounded cache shared by IngestGate and AggregateView.

    Constructed once per process and passed to the components that need
    it. TTLs and the clock are injected so tests control time.
    """

    def __init__(
        self,
        location_ttl: Optional[float] = None,
        active_list_ttl: Optional[float] = None,
        vehicle_ttl: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        settings = config.cache
        self.clock = clock or time.time

        self._regions: Dict[CacheKind, _Region] = {
            CacheKind.LAST_ACCEPTED: _Region(ttl=None),
            CacheKind.LATEST_LOCATION: _Region(
                location_ttl if location_ttl is not None else settings.location_ttl
            ),
            CacheKind.ACTIVE_LIST: _Region(
                active_list_ttl if active_list_ttl is not None else settings.active_list_ttl
            ),
            CacheKind.VEHICLE: _Region(
                vehicle_ttl if vehicle_ttl is not None else settings.vehicle_ttl
            ),
        }

        # Per-vehicle admission locks (rate-limit check-and-set)
        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

        # Statistics
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def ttl(self, kind: CacheKind) -> Optional[float]:
        return self._regions[kind].ttl

    # -------------------------------------------------------------------------
    # Core contract
    # -------------------------------------------------------------------------

    def get(self, kind: CacheKind, key: Hashable = SINGLETON) -> Optional[Any]:
        """
        Get a cached value.

        Returns None if not cached or expired. Expired entries are removed.
        """
        region = self._regions[kind]
        now = self.clock()

        with region.lock:
            entry = region.entries.get(key)
            if entry is not None:
                if region.ttl is None or entry.age(now) < region.ttl:
                    self._count(hit=True)
                    return entry.value
                # Expired
                del region.entries[key]

        self._count(hit=False)
        return None

    def put(self, kind: CacheKind, value: Any, key: Hashable = SINGLETON) -> None:
        region = self._regions[kind]
        with region.lock:
            region.entries[key] = CacheEntry(value=value, cached_at=self.clock())

    def invalidate(self, kind: CacheKind, key: Hashable = SINGLETON) -> None:
        region = self._regions[kind]
        with region.lock:
            region.entries.pop(key, None)

    def invalidate_vehicle(self, vehicle_id: str) -> None:
        """
        Drop everything cached about one vehicle.

        Also drops the active-list snapshot, since membership may have changed.
        """
        for kind in (CacheKind.LAST_ACCEPTED, CacheKind.LATEST_LOCATION, CacheKind.VEHICLE):
            self.invalidate(kind, vehicle_id)
        self.invalidate(CacheKind.ACTIVE_LIST)

    def invalidate_all(self) -> None:
        for region in self._regions.values():
            with region.lock:
                region.entries.clear()
        logger.info('All caches cleared')

    # -------------------------------------------------------------------------
    # Rate-limit helpers
    # -------------------------------------------------------------------------

    def admission_lock(self, vehicle_id: str) -> threading.Lock:
        """
        Lock scoped to one vehicle.

        Held across the rate-limit check, the store write and the cache
        update so two submissions for the same vehicle can't both pass.
        """
        with self._key_locks_guard:
            lock = self._key_locks.get(vehicle_id)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[vehicle_id] = lock
            return lock

    def last_accepted_at(self, vehicle_id: str) -> Optional[float]:
        return self.get(CacheKind.LAST_ACCEPTED, vehicle_id)

    def record_accepted(self, sample, accepted_at: Optional[float] = None) -> None:
        """
        Note an accepted write for the sample's vehicle.

        ``latest_location`` is only replaced by a sample that sorts newer,
        so an out-of-order client timestamp can't roll the view backwards.
        """
        vehicle_id = sample.vehicle_id
        accepted_at = self.clock() if accepted_at is None else accepted_at
        self.put(CacheKind.LAST_ACCEPTED, accepted_at, vehicle_id)

        region = self._regions[CacheKind.LATEST_LOCATION]
        with region.lock:
            current = region.entries.get(vehicle_id)
            if current is None or sample.is_newer_than(current.value):
                region.entries[vehicle_id] = CacheEntry(value=sample, cached_at=self.clock())

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def sweep(self, factor: float = 2.0) -> int:
        """
        Drop entries older than ``factor`` times their TTL.

        Bounds memory for vehicles that went silent without a stop.
        Returns count of entries removed.
        """
        now = self.clock()
        removed = 0
        for kind, region in self._regions.items():
            if region.ttl is None:
                continue
            limit = region.ttl * factor
            with region.lock:
                stale = [k for k, e in region.entries.items() if e.age(now) > limit]
                for key in stale:
                    del region.entries[key]
                removed += len(stale)

        if removed:
            logger.debug(f'Cache sweep removed {removed} stale entries')
        return removed

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        entries = {}
        for kind, region in self._regions.items():
            with region.lock:
                entries[kind.value] = len(region.entries)

        with self._stats_lock:
            hits, misses = self._hits, self._misses

        return {
            'entries': entries,
            'hits': hits,
            'misses': misses,
            'hit_rate': hits / (hits + misses) if (hits + misses) > 0 else 0,
        }
