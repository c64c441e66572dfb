"""
Process-wide wiring for FleetTrack.

Builds one storage client, one freshness cache and one event sink, and
hands them to the registry, store, gate, view and sweeper. Nothing is
shared through module globals beyond configuration.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fleettrack.analytics import AggregateView
from fleettrack.cache import FreshnessCache
from fleettrack.config import AppConfig, config as default_config
from fleettrack.events import EventSink, FanOutEventSink, LoggingEventSink, MemoryEventSink
from fleettrack.ingestion import IngestGate, LocationStore
from fleettrack.models import Database
from fleettrack.registry import VehicleRegistry
from fleettrack.retention import RetentionSweeper

logger = logging.getLogger(__name__)


@dataclass
class TrackerRuntime:
    """Everything a running tracker needs."""
    config: AppConfig
    database: Database
    cache: FreshnessCache
    events: EventSink
    registry: VehicleRegistry
    store: LocationStore
    gate: IngestGate
    view: AggregateView
    sweeper: RetentionSweeper
    recent_events: Optional[MemoryEventSink] = None

    @classmethod
    def build(
        cls,
        cfg: Optional[AppConfig] = None,
        database: Optional[Database] = None,
        events: Optional[EventSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> 'TrackerRuntime':
        """Construct and connect all components. Creates the schema if missing."""
        cfg = cfg or default_config
        clock = clock or time.time

        if database is None:
            database = Database(
                url=cfg.database.url,
                pool_size=cfg.database.pool_size,
                max_overflow=cfg.database.max_overflow,
                pool_timeout=cfg.database.pool_timeout,
                statement_timeout_ms=cfg.database.statement_timeout_ms,
                retry_attempts=cfg.database.retry_attempts,
                retry_backoff_seconds=cfg.database.retry_backoff_seconds,
            )
        database.init_schema()

        recent_events = None
        if events is None:
            recent_events = MemoryEventSink()
            events = FanOutEventSink(LoggingEventSink(), recent_events)
        elif isinstance(events, MemoryEventSink):
            recent_events = events

        cache = FreshnessCache(
            location_ttl=cfg.cache.location_ttl,
            active_list_ttl=cfg.cache.active_list_ttl,
            vehicle_ttl=cfg.cache.vehicle_ttl,
            clock=clock,
        )
        registry = VehicleRegistry(
            database,
            default_label=cfg.ingestion.default_driver_label,
            clock=clock,
        )
        store = LocationStore(database)

        runtime = cls(
            config=cfg,
            database=database,
            cache=cache,
            events=events,
            registry=registry,
            store=store,
            gate=IngestGate(
                registry,
                store,
                cache,
                events=events,
                min_interval_seconds=cfg.ingestion.min_interval_seconds,
                batch_max=cfg.ingestion.batch_max,
                clock=clock,
            ),
            view=AggregateView(
                registry,
                store,
                cache,
                recency_minutes=cfg.views.recency_minutes,
                clock=clock,
            ),
            sweeper=RetentionSweeper(
                registry,
                store,
                cache,
                events=events,
                retention_days=cfg.retention.days,
                keep_every_nth=cfg.retention.keep_every_nth,
                inactivity_hours=cfg.retention.inactivity_hours,
                clock=clock,
            ),
            recent_events=recent_events,
        )
        logger.info(f'Tracker runtime ready ({database.dialect_name})')
        return runtime

    def start_background(self) -> bool:
        """Start the periodic sweeper if an interval is configured."""
        minutes = self.config.retention.sweep_interval_minutes
        if minutes <= 0:
            return False
        self.sweeper.start_background(minutes * 60)
        return True

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.cache.invalidate_all()
        self.database.dispose()
