"""
Shared fixtures for the FleetTrack test suite.

Every test gets its own file-backed SQLite database (real QueuePool, WAL)
and a controllable clock shared by all runtime components.
"""

import pytest

from fleettrack.app import create_app
from fleettrack.config import (
    AppConfig,
    CacheConfig,
    DatabaseConfig,
    IngestionConfig,
    RetentionConfig,
    ViewConfig,
)
from fleettrack.events import MemoryEventSink
from fleettrack.models import Database
from fleettrack.runtime import TrackerRuntime

# 2025-10-09T09:20:00Z, fixed so tests never depend on wall time
START_TIME = 1760001600.0


class FakeClock:
    """Callable epoch clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'fleettrack.db'}"


@pytest.fixture
def test_config(database_url) -> AppConfig:
    return AppConfig(
        database=DatabaseConfig(
            url=database_url,
            pool_size=5,
            max_overflow=2,
            pool_timeout=2,
            retry_attempts=2,
            retry_backoff_seconds=0,
        ),
        ingestion=IngestionConfig(min_interval_seconds=8, batch_max=50),
        cache=CacheConfig(location_ttl=15, active_list_ttl=30, vehicle_ttl=60),
        views=ViewConfig(recency_minutes=30),
        retention=RetentionConfig(
            days=7,
            keep_every_nth=10,
            inactivity_hours=2,
            sweep_interval_minutes=0,
        ),
    )


@pytest.fixture
def database(test_config):
    db = Database(
        url=test_config.database.url,
        pool_size=test_config.database.pool_size,
        max_overflow=test_config.database.max_overflow,
        pool_timeout=test_config.database.pool_timeout,
        retry_attempts=test_config.database.retry_attempts,
        retry_backoff_seconds=test_config.database.retry_backoff_seconds,
    )
    yield db
    db.dispose()


@pytest.fixture
def runtime(test_config, database, events, clock):
    rt = TrackerRuntime.build(test_config, database=database, events=events, clock=clock)
    yield rt
    rt.shutdown()


@pytest.fixture
def gate(runtime):
    return runtime.gate


@pytest.fixture
def view(runtime):
    return runtime.view


@pytest.fixture
def app(runtime):
    flask_app = create_app(runtime=runtime, start_sweeper=False)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed_samples(runtime, clock):
    """Write ``count`` samples for one vehicle, one per ``spacing`` seconds, ending ``age`` ago."""

    def _seed(vehicle_id: str, count: int, spacing: float = 60.0, age: float = 0.0):
        newest = clock() - age
        return runtime.store.batch_insert(
            {
                'vehicle_id': vehicle_id,
                'latitude': 40.0 + i * 0.0001,
                'longitude': -74.0 + i * 0.0001,
                'accuracy': 5.0,
                'observed_at': newest - (count - 1 - i) * spacing,
                'recorded_at': newest - (count - 1 - i) * spacing,
            }
            for i in range(count)
        )

    return _seed
