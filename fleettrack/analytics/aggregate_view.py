"""
Aggregate views over the fleet - the read side.

Reads prefer the FreshnessCache and fall back to a single composite query
against the registry and location store. The cache is never a correctness
dependency: any cache failure degrades to a storage read.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fleettrack.analytics.track_analysis import downsample, stride_for, summarize_track
from fleettrack.cache import CacheKind, FreshnessCache
from fleettrack.config import config
from fleettrack.errors import NotFoundError, ValidationError
from fleettrack.ingestion.location_store import LocationStore
from fleettrack.models import SampleRecord, VehicleRecord, epoch_to_iso
from fleettrack.registry import VehicleRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveVehicle:
    """An active vehicle paired with its latest known location."""
    vehicle: VehicleRecord
    latest_location: Optional[SampleRecord]

    def to_dict(self) -> dict:
        return {
            'vehicle': self.vehicle.to_dict(),
            'latest_location': self.latest_location.to_dict() if self.latest_location else None,
        }


def _display_order(item: ActiveVehicle) -> tuple:
    # Newest fix first, vehicles without a fix last, then by id
    if item.latest_location is None:
        return (1, 0.0, 0.0, item.vehicle.vehicle_id)
    return (0, -item.latest_location.observed_at, -item.latest_location.recorded_at,
            item.vehicle.vehicle_id)


class AggregateView:
    """
    Active fleet, dashboard and history queries.

    Configuration:
    - recency_minutes: samples older than this don't count as a vehicle's
      latest location in the fleet list (default 30)
    """

    def __init__(
        self,
        registry: VehicleRegistry,
        store: LocationStore,
        cache: FreshnessCache,
        recency_minutes: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.registry = registry
        self.store = store
        self.cache = cache
        self.recency_minutes = (
            config.views.recency_minutes if recency_minutes is None else recency_minutes
        )
        self.clock = clock or time.time

    def _cached(self, kind: CacheKind, key=None):
        try:
            if key is None:
                return self.cache.get(kind)
            return self.cache.get(kind, key)
        except Exception:
            logger.exception(f'Cache read failed for {kind.value}, falling back to storage')
            return None

    def _store_in_cache(self, kind: CacheKind, value) -> None:
        try:
            self.cache.put(kind, value)
        except Exception:
            logger.exception(f'Cache write failed for {kind.value}')

    # -------------------------------------------------------------------------
    # Active fleet
    # -------------------------------------------------------------------------

    def list_active(self) -> List[ActiveVehicle]:
        """
        Active vehicles with their latest location.

        A fresh snapshot is overlaid with newer per-vehicle locations from
        the ingest path, so an accepted update shows up without a store read.
        """
        snapshot = self._cached(CacheKind.ACTIVE_LIST)
        if snapshot is None:
            snapshot = self._load_active()
            self._store_in_cache(CacheKind.ACTIVE_LIST, snapshot)

        merged = []
        for item in snapshot:
            fresh = self._cached(CacheKind.LATEST_LOCATION, item.vehicle.vehicle_id)
            if fresh is not None and fresh.is_newer_than(item.latest_location):
                item = ActiveVehicle(vehicle=item.vehicle, latest_location=fresh)
            merged.append(item)

        merged.sort(key=_display_order)
        return merged

    def _load_active(self) -> tuple:
        since = self.clock() - self.recency_minutes * 60
        pairs = self.store.active_with_latest(since)
        items = [ActiveVehicle(vehicle=v, latest_location=s) for v, s in pairs]
        items.sort(key=_display_order)
        logger.debug(f'Active list loaded from storage: {len(items)} vehicles')
        return tuple(items)

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    def dashboard(self) -> dict:
        """
        Fleet summary.

        The active list is cache-first; store statistics are always live.
        """
        active = self.list_active()
        stats = self.store.stats()

        return {
            'total_active_vehicles': len(active),
            'active_vehicles': [item.vehicle.to_dict() for item in active],
            'recent_locations': [
                item.latest_location.to_dict() for item in active if item.latest_location
            ],
            'statistics': stats,
            'cache': self.cache.stats,
            'generated_at': datetime.now(timezone.utc).isoformat(),
        }

    # -------------------------------------------------------------------------
    # Per-vehicle reads
    # -------------------------------------------------------------------------

    def _require_vehicle(self, vehicle_id: str) -> VehicleRecord:
        vehicle = self.registry.find(vehicle_id)
        if vehicle is None:
            raise NotFoundError(f'Vehicle {vehicle_id} not found')
        return vehicle

    def latest_location(self, vehicle_id: str) -> SampleRecord:
        """Most recent sample for one vehicle, cache first."""
        cached = self._cached(CacheKind.LATEST_LOCATION, vehicle_id)
        if cached is not None:
            return cached

        self._require_vehicle(vehicle_id)
        sample = self.store.latest(vehicle_id)
        if sample is None:
            raise NotFoundError(f'No location data found for vehicle {vehicle_id}')
        return sample

    def samples(self, vehicle_id: str, limit: Optional[int] = None) -> List[SampleRecord]:
        """Raw samples for one vehicle, newest first."""
        limit = config.views.sample_list_limit if limit is None else limit
        if limit < 1:
            raise ValidationError('limit must be at least 1')

        self._require_vehicle(vehicle_id)
        return self.store.list_for_vehicle(vehicle_id, limit)

    def recent_locations(
        self,
        minutes: Optional[int] = None,
        max_per_vehicle: Optional[int] = None,
    ) -> Dict[str, List[SampleRecord]]:
        """Each vehicle's last few samples within the trailing ``minutes``."""
        minutes = config.views.recent_minutes if minutes is None else minutes
        if max_per_vehicle is None:
            max_per_vehicle = config.views.recent_max_per_vehicle
        if minutes <= 0:
            raise ValidationError('minutes must be positive')
        if max_per_vehicle < 1:
            raise ValidationError('max_per_vehicle must be at least 1')

        return self.store.recent(self.clock() - minutes * 60, max_per_vehicle)

    def history(
        self,
        vehicle_id: str,
        hours: Optional[int] = None,
        max_points: Optional[int] = None,
    ) -> dict:
        """
        Position history for a vehicle over the trailing ``hours``.

        Returns every sample oldest to newest, thinned to at most
        ``max_points`` with the newest sample always included.
        """
        hours = config.views.history_hours if hours is None else hours
        max_points = config.views.history_max_points if max_points is None else max_points
        if hours <= 0:
            raise ValidationError('hours must be positive')
        if max_points < 1:
            raise ValidationError('max_points must be at least 1')

        vehicle = self._require_vehicle(vehicle_id)
        since = self.clock() - hours * 3600
        all_samples = self.store.history(vehicle_id, since)

        sampled = downsample(all_samples, max_points)
        summary = summarize_track(all_samples)

        return {
            'vehicle': vehicle.to_dict(),
            'samples': [s.to_dict() for s in sampled],
            'total_sample_count': len(all_samples),
            'sampled_point_count': len(sampled),
            'stride': stride_for(len(all_samples), max_points),
            'time_range': {
                'hours': hours,
                'max_points': max_points,
                'from': epoch_to_iso(since),
            },
            'summary': {
                **summary.to_dict(),
                'first_observed_at': epoch_to_iso(summary.first_observed_at),
                'last_observed_at': epoch_to_iso(summary.last_observed_at),
            },
        }
