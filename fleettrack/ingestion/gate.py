"""
Ingest gate - admission control for location updates.

Decides whether an incoming location update is written, throttled or
rejected:

1. Validate: required fields, coordinate bounds, accuracy, timestamp
2. Check state: vehicle must exist and be actively tracked
3. Rate-limit: at most one stored sample per vehicle per window
4. Write-through: append to the location store
5. Cache: advance last-accepted time and latest location

A throttled update is reported as accepted so clients don't retry it,
but nothing is stored and the rate-limit window doesn't move. Storage
failures propagate with the cache untouched.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from fleettrack.cache import CacheKind, FreshnessCache
from fleettrack.config import config
from fleettrack.errors import NotFoundError, StateError, ValidationError
from fleettrack.events import EventSink, LoggingEventSink
from fleettrack.ingestion.location_store import LocationStore
from fleettrack.ingestion.validation import (
    LocationInput,
    require_vehicle_id,
    validate_driver_label,
    validate_location,
    validate_location_entry,
    validate_vehicle_id,
)
from fleettrack.models import SampleRecord, VehicleRecord
from fleettrack.registry import VehicleRegistry

logger = logging.getLogger(__name__)

RATE_LIMITED = 'rate_limited'

# Client clocks may run ahead a little; more than this is a bad timestamp
MAX_FUTURE_SKEW_SECONDS = 86400


@dataclass
class SubmitResult:
    """Outcome of a single location submission."""
    accepted: bool
    rate_limited: bool = False
    reason: Optional[str] = None
    sample: Optional[SampleRecord] = None

    def to_dict(self) -> dict:
        result = {
            'accepted': self.accepted,
            'rate_limited': self.rate_limited,
        }
        if self.reason:
            result['reason'] = self.reason
        if self.sample:
            result['sample'] = self.sample.to_dict()
        return result


@dataclass
class BatchResult:
    """Outcome of a batch submission. Failures are counted, not itemized."""
    processed_count: int
    failed_count: int
    samples: List[SampleRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'processed_count': self.processed_count,
            'failed_count': self.failed_count,
        }


@dataclass
class TrackingResult:
    vehicle: VehicleRecord
    created: bool

    def to_dict(self) -> dict:
        return {
            'vehicle': self.vehicle.to_dict(),
            'created': self.created,
        }


class IngestGate:
    """
    Admission control for the write path.

    Shares the FreshnessCache with the read side. Within one vehicle the
    rate-limit check, the store write and the cache update happen under
    that vehicle's admission lock; different vehicles never contend.
    """

    def __init__(
        self,
        registry: VehicleRegistry,
        store: LocationStore,
        cache: FreshnessCache,
        events: Optional[EventSink] = None,
        min_interval_seconds: Optional[float] = None,
        batch_max: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.registry = registry
        self.store = store
        self.cache = cache
        self.events = events or LoggingEventSink()
        self.min_interval_seconds = (
            config.ingestion.min_interval_seconds
            if min_interval_seconds is None else min_interval_seconds
        )
        self.batch_max = batch_max or config.ingestion.batch_max
        self.clock = clock or time.time

    # -------------------------------------------------------------------------
    # Tracking lifecycle
    # -------------------------------------------------------------------------

    def start_tracking(self, vehicle_id: Any, driver_label: Any = None) -> TrackingResult:
        """Create or reactivate a vehicle. Idempotent."""
        vehicle_id = validate_vehicle_id(vehicle_id)
        driver_label = validate_driver_label(driver_label)

        vehicle, created = self.registry.start_tracking(vehicle_id, driver_label)

        self.cache.put(CacheKind.VEHICLE, vehicle, vehicle_id)
        self.cache.invalidate(CacheKind.ACTIVE_LIST)

        self.events.emit('tracking.started', vehicle_id=vehicle_id, created=created)
        return TrackingResult(vehicle=vehicle, created=created)

    def stop_tracking(self, vehicle_id: Any) -> VehicleRecord:
        """
        Mark a vehicle inactive and forget its cached state.

        Clearing the rate-limit entry means a restart can submit immediately.
        """
        vehicle_id = require_vehicle_id(vehicle_id)

        # Don't let an in-flight submission re-populate the entries we drop
        with self.cache.admission_lock(vehicle_id):
            vehicle = self.registry.set_active(vehicle_id, False)
            self.cache.invalidate_vehicle(vehicle_id)

        self.events.emit('tracking.stopped', vehicle_id=vehicle_id)
        return vehicle

    # -------------------------------------------------------------------------
    # Single submissions
    # -------------------------------------------------------------------------

    def _active_vehicle(self, vehicle_id: str) -> VehicleRecord:
        """Vehicle status, from cache when fresh."""
        vehicle = self.cache.get(CacheKind.VEHICLE, vehicle_id)
        if vehicle is None:
            vehicle = self.registry.find(vehicle_id)
            if vehicle is not None:
                self.cache.put(CacheKind.VEHICLE, vehicle, vehicle_id)
        return self._require_active(vehicle_id, vehicle)

    def _require_active(self, vehicle_id: str, vehicle: Optional[VehicleRecord]) -> VehicleRecord:
        if vehicle is None:
            raise NotFoundError(f'Vehicle {vehicle_id} not found. Please start tracking first.')
        if not vehicle.is_active:
            raise StateError(f'Vehicle {vehicle_id} is not currently being tracked')
        return vehicle

    def _check_skew(self, location: LocationInput, now: float) -> None:
        if location.observed_at is not None and location.observed_at - now > MAX_FUTURE_SKEW_SECONDS:
            raise ValidationError('Timestamp is too far in the future')

    def submit(
        self,
        vehicle_id: Any,
        latitude: Any,
        longitude: Any,
        accuracy: Any = None,
        observed_at: Any = None,
    ) -> SubmitResult:
        """
        Admit one location update.

        Raises ValidationError, NotFoundError or StateError without side
        effects; StorageError/CapacityError if the write fails.
        """
        try:
            location = validate_location(vehicle_id, latitude, longitude, accuracy, observed_at)
            self._check_skew(location, self.clock())
            self._active_vehicle(location.vehicle_id)
        except (ValidationError, NotFoundError, StateError) as e:
            self.events.emit('location.rejected', vehicle_id=vehicle_id, reason=e.kind)
            raise

        vehicle_id = location.vehicle_id
        with self.cache.admission_lock(vehicle_id):
            now = self.clock()
            last_accepted = self.cache.last_accepted_at(vehicle_id)

            if last_accepted is not None and now - last_accepted < self.min_interval_seconds:
                self.events.emit(
                    'location.rate_limited',
                    vehicle_id=vehicle_id,
                    since_last=round(now - last_accepted, 3),
                )
                return SubmitResult(accepted=True, rate_limited=True, reason=RATE_LIMITED)

            # Re-read status: a stop may have landed after the cached check.
            # Deactivations clear cached state under this same lock
            try:
                self._require_active(vehicle_id, self.registry.find(vehicle_id))
            except (NotFoundError, StateError) as e:
                self.cache.invalidate(CacheKind.VEHICLE, vehicle_id)
                self.events.emit('location.rejected', vehicle_id=vehicle_id, reason=e.kind)
                raise

            sample = self.store.insert(
                vehicle_id=vehicle_id,
                latitude=location.latitude,
                longitude=location.longitude,
                accuracy=location.accuracy,
                observed_at=location.observed_at if location.observed_at is not None else now,
                recorded_at=now,
            )
            self.cache.record_accepted(sample, accepted_at=now)

        self.events.emit('location.accepted', vehicle_id=vehicle_id, sample_id=sample.sample_id)
        return SubmitResult(accepted=True, sample=sample)

    # -------------------------------------------------------------------------
    # Batch submissions
    # -------------------------------------------------------------------------

    def submit_batch(self, entries: Sequence[Dict[str, Any]]) -> BatchResult:
        """
        Admit many location updates with one store write.

        Invalid entries (bad fields, unknown or inactive vehicle) are
        dropped and counted; they never block the valid ones.
        """
        if not isinstance(entries, (list, tuple)) or not entries:
            raise ValidationError('Locations array is required and must not be empty')
        if len(entries) > self.batch_max:
            raise ValidationError(f'Maximum {self.batch_max} locations per batch request')

        received = self.clock()
        valid = []
        for entry in entries:
            try:
                location = validate_location_entry(entry)
                self._check_skew(location, received)
            except ValidationError:
                continue
            valid.append(location)

        # Sorted acquisition; every other path holds at most one of these
        with ExitStack() as stack:
            for vehicle_id in sorted({loc.vehicle_id for loc in valid}):
                stack.enter_context(self.cache.admission_lock(vehicle_id))

            known = self.registry.find_many(loc.vehicle_id for loc in valid)
            writable = [
                loc for loc in valid
                if loc.vehicle_id in known and known[loc.vehicle_id].is_active
            ]

            now = self.clock()
            inserted = self.store.batch_insert(
                {
                    'vehicle_id': loc.vehicle_id,
                    'latitude': loc.latitude,
                    'longitude': loc.longitude,
                    'accuracy': loc.accuracy,
                    'observed_at': loc.observed_at if loc.observed_at is not None else now,
                    'recorded_at': now,
                }
                for loc in writable
            )

            for sample in inserted:
                self.cache.record_accepted(sample, accepted_at=now)

        result = BatchResult(
            processed_count=len(inserted),
            failed_count=len(entries) - len(inserted),
            samples=inserted,
        )
        self.events.emit(
            'batch.processed',
            processed=result.processed_count,
            failed=result.failed_count,
        )
        logger.info(f'Batch updated {result.processed_count} locations ({result.failed_count} dropped)')
        return result
