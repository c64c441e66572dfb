"""
Retention sweep for location history and tracking status.

One sweep does three things:

1. Thins samples older than the retention window down to every Nth per
   vehicle, marking the kept ones so later sweeps leave them alone
2. Deactivates vehicles that have been silent for the inactivity window
3. Drops cache entries that have outlived twice their TTL

Runs on demand (cleanup endpoint) or periodically on a daemon thread.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from fleettrack.cache import FreshnessCache
from fleettrack.config import config
from fleettrack.errors import ValidationError
from fleettrack.events import EventSink, LoggingEventSink
from fleettrack.ingestion.location_store import LocationStore
from fleettrack.registry import VehicleRegistry

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deleted_count: int
    retained_count: int
    deactivated: List[str] = field(default_factory=list)
    cache_evicted: int = 0

    def to_dict(self) -> dict:
        return {
            'deleted_count': self.deleted_count,
            'retained_count': self.retained_count,
            'deactivated_vehicles': self.deactivated,
            'deactivated_count': len(self.deactivated),
            'cache_evicted': self.cache_evicted,
        }


class RetentionSweeper:
    """
    Retention and inactivity maintenance.

    Configuration:
    - retention_days: samples recorded before this are thinned (default 7)
    - keep_every_nth: one in N aged samples survives (default 10)
    - inactivity_hours: silence before auto-deactivation (default 2)
    """

    def __init__(
        self,
        registry: VehicleRegistry,
        store: LocationStore,
        cache: FreshnessCache,
        events: Optional[EventSink] = None,
        retention_days: Optional[int] = None,
        keep_every_nth: Optional[int] = None,
        inactivity_hours: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        settings = config.retention
        self.registry = registry
        self.store = store
        self.cache = cache
        self.events = events or LoggingEventSink()
        self.retention_days = settings.days if retention_days is None else retention_days
        self.keep_every_nth = keep_every_nth or settings.keep_every_nth
        self.inactivity_hours = (
            settings.inactivity_hours if inactivity_hours is None else inactivity_hours
        )
        self.clock = clock or time.time

        # Background state
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweep_count = 0
        self._error_count = 0
        self._last_sweep: Optional[float] = None

    def sweep(
        self,
        retention_days: Optional[int] = None,
        keep_every_nth: Optional[int] = None,
    ) -> SweepResult:
        """
        Run one retention pass.

        Safe to repeat: retained samples are never re-ranked, so an
        immediate second run deletes nothing.
        """
        days = self.retention_days if retention_days is None else retention_days
        nth = self.keep_every_nth if keep_every_nth is None else keep_every_nth

        if days < 0:
            raise ValidationError('retention_days must not be negative')
        if nth < 1:
            raise ValidationError('keep_every_nth must be at least 1')

        now = self.clock()
        deleted, retained = self.store.apply_retention(now - days * 86400, nth)

        deactivated = self.registry.deactivate_silent(now - self.inactivity_hours * 3600)
        for vehicle_id in deactivated:
            # An in-flight submission either finishes first or sees the new status
            with self.cache.admission_lock(vehicle_id):
                self.cache.invalidate_vehicle(vehicle_id)

        evicted = self.cache.sweep()

        result = SweepResult(
            deleted_count=deleted,
            retained_count=retained,
            deactivated=deactivated,
            cache_evicted=evicted,
        )
        self._sweep_count += 1
        self._last_sweep = now

        self.events.emit(
            'sweep.completed',
            deleted=deleted,
            retained=retained,
            deactivated=len(deactivated),
            cache_evicted=evicted,
        )
        return result

    # -------------------------------------------------------------------------
    # Background operation
    # -------------------------------------------------------------------------

    def run_continuous(self, interval_seconds: float) -> None:
        """
        Sweep every ``interval_seconds`` until stopped.

        This method blocks - use start_background() for non-blocking.
        """
        self._running = True
        logger.info(f'Starting retention sweeps (interval={interval_seconds}s)')

        while not self._stop_event.wait(interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                self._error_count += 1
                logger.error(f'Retention sweep failed: {e}')

        self._running = False

    def start_background(self, interval_seconds: float) -> None:
        """Start periodic sweeps in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning('Retention sweeper already running')
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_continuous,
            args=(interval_seconds,),
            daemon=True,
            name='fleettrack-retention',
        )
        self._thread.start()
        logger.info('Background retention sweeper started')

    def stop(self) -> None:
        """Stop background sweeps."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        self._running = False

    @property
    def stats(self) -> dict:
        return {
            'running': self._running,
            'sweep_count': self._sweep_count,
            'error_count': self._error_count,
            'last_sweep': self._last_sweep,
            'retention_days': self.retention_days,
            'keep_every_nth': self.keep_every_nth,
            'inactivity_hours': self.inactivity_hours,
        }
