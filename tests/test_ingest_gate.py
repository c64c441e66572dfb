import threading

import pytest

from fleettrack.cache import CacheKind
from fleettrack.errors import NotFoundError, StateError, StorageError, ValidationError


def _stored_count(runtime, vehicle_id):
    return len(runtime.store.history(vehicle_id, since=0))


def test_start_tracking_twice_reactivates_single_vehicle(runtime, gate):
    first = gate.start_tracking('BUS-101', 'Alice Smith')
    gate.stop_tracking('BUS-101')
    second = gate.start_tracking('BUS-101')

    assert first.created is True
    assert second.created is False
    assert second.vehicle.is_active is True
    # Label kept when none is given on restart
    assert second.vehicle.driver_label == 'Alice Smith'

    rows = runtime.database.execute('SELECT COUNT(*) FROM vehicles').rows
    assert rows[0][0] == 1


def test_start_tracking_uses_default_label(gate):
    result = gate.start_tracking('BUS-102')
    assert result.vehicle.driver_label == 'Unknown'


@pytest.mark.parametrize('vehicle_id', ['', 'bad id!', 'X' * 21, None])
def test_start_tracking_rejects_bad_ids(gate, vehicle_id):
    with pytest.raises(ValidationError):
        gate.start_tracking(vehicle_id)


def test_first_submission_is_stored(runtime, gate, events):
    gate.start_tracking('BUS-1')
    result = gate.submit('BUS-1', 40.7128, -74.0060, 5)

    assert result.accepted is True
    assert result.rate_limited is False
    assert result.sample.latitude == 40.7128
    assert _stored_count(runtime, 'BUS-1') == 1
    assert len(events.events('location.accepted')) == 1


def test_rate_limit_window(runtime, gate, clock, events):
    gate.start_tracking('BUS-1')
    start = clock()

    assert gate.submit('BUS-1', 40.0, -74.0).rate_limited is False

    clock.advance(5)
    throttled = gate.submit('BUS-1', 40.1, -74.1)
    assert throttled.accepted is True
    assert throttled.rate_limited is True
    assert throttled.reason == 'rate_limited'
    assert throttled.sample is None
    # Throttled submissions don't move the window
    assert runtime.cache.last_accepted_at('BUS-1') == start

    clock.advance(4)
    third = gate.submit('BUS-1', 40.2, -74.2)
    assert third.rate_limited is False
    assert _stored_count(runtime, 'BUS-1') == 2
    assert len(events.events('location.rate_limited')) == 1


def test_rate_limit_is_per_vehicle(runtime, gate):
    gate.start_tracking('BUS-1')
    gate.start_tracking('BUS-2')

    assert gate.submit('BUS-1', 40.0, -74.0).rate_limited is False
    assert gate.submit('BUS-2', 41.0, -75.0).rate_limited is False


def test_stop_tracking_clears_rate_limit(runtime, gate):
    gate.start_tracking('BUS-1')
    gate.submit('BUS-1', 40.0, -74.0)

    gate.stop_tracking('BUS-1')
    assert runtime.cache.last_accepted_at('BUS-1') is None

    gate.start_tracking('BUS-1')
    result = gate.submit('BUS-1', 40.1, -74.1)
    assert result.rate_limited is False
    assert _stored_count(runtime, 'BUS-1') == 2


def test_submit_for_unknown_vehicle(gate, events):
    with pytest.raises(NotFoundError):
        gate.submit('NOPE', 40.0, -74.0)
    assert events.events('location.rejected')[0].fields['reason'] == 'not_found'


def test_submit_for_stopped_vehicle(gate):
    gate.start_tracking('BUS-1')
    gate.stop_tracking('BUS-1')

    with pytest.raises(StateError):
        gate.submit('BUS-1', 40.0, -74.0)


@pytest.mark.parametrize(
    'latitude, longitude, accuracy',
    [
        (91, 0, None),
        (0, 181, None),
        ('north', 0, None),
        (None, 0, None),
        (float('nan'), 0, None),
        (0, 0, -1),
    ],
)
def test_submit_rejects_invalid_fields(runtime, gate, latitude, longitude, accuracy):
    gate.start_tracking('BUS-1')

    with pytest.raises(ValidationError):
        gate.submit('BUS-1', latitude, longitude, accuracy)

    assert _stored_count(runtime, 'BUS-1') == 0
    assert runtime.cache.last_accepted_at('BUS-1') is None


def test_submit_accepts_client_timestamp(gate, clock):
    gate.start_tracking('BUS-1')
    result = gate.submit('BUS-1', 40.0, -74.0, observed_at='2025-10-09T09:00:00Z')

    assert result.sample.observed_at == clock() - 20 * 60
    assert result.sample.recorded_at == clock()


def test_stop_unknown_vehicle(gate):
    with pytest.raises(NotFoundError):
        gate.stop_tracking('NOPE')


def test_batch_counts_invalid_entries(runtime, gate, events):
    gate.start_tracking('BUS-1')
    gate.start_tracking('BUS-2')

    result = gate.submit_batch([
        {'vehicle_id': 'BUS-1', 'latitude': 40.0, 'longitude': -74.0},
        {'vehicle_id': 'BUS-2', 'latitude': 41.0, 'longitude': -75.0},
        {'vehicle_id': 'BUS-1', 'latitude': 200, 'longitude': -74.0},
        {'vehicle_id': 'BUS-1', 'latitude': 40.1, 'longitude': -74.1, 'accuracy': 3},
        {'vehicle_id': 'BUS-2', 'latitude': 41.1, 'longitude': -75.1},
    ])

    assert result.processed_count == 4
    assert result.failed_count == 1
    assert _stored_count(runtime, 'BUS-1') == 2
    assert _stored_count(runtime, 'BUS-2') == 2
    assert events.events('batch.processed')[0].fields == {'processed': 4, 'failed': 1}


def test_batch_skips_unknown_and_inactive_vehicles(runtime, gate):
    gate.start_tracking('BUS-1')
    gate.start_tracking('BUS-2')
    gate.stop_tracking('BUS-2')

    result = gate.submit_batch([
        {'vehicle_id': 'BUS-1', 'latitude': 40.0, 'longitude': -74.0},
        {'vehicle_id': 'BUS-2', 'latitude': 41.0, 'longitude': -75.0},
        {'vehicle_id': 'NOPE', 'latitude': 42.0, 'longitude': -76.0},
    ])

    assert result.processed_count == 1
    assert result.failed_count == 2


def test_batch_updates_rate_limit_state(runtime, gate):
    gate.start_tracking('BUS-1')
    gate.submit_batch([{'vehicle_id': 'BUS-1', 'latitude': 40.0, 'longitude': -74.0}])

    assert gate.submit('BUS-1', 40.1, -74.1).rate_limited is True


@pytest.mark.parametrize('entries', [[], None, 'not-a-list'])
def test_batch_requires_entries(gate, entries):
    with pytest.raises(ValidationError):
        gate.submit_batch(entries)


def test_batch_size_limit(gate):
    entries = [{'vehicle_id': 'BUS-1', 'latitude': 0, 'longitude': 0}] * 51
    with pytest.raises(ValidationError):
        gate.submit_batch(entries)


def test_stop_between_status_check_and_write(runtime, gate, monkeypatch):
    gate.start_tracking('BUS-1')
    check_active = gate._active_vehicle

    def stop_after_check(vehicle_id):
        vehicle = check_active(vehicle_id)
        gate.stop_tracking(vehicle_id)
        return vehicle

    monkeypatch.setattr(gate, '_active_vehicle', stop_after_check)
    with pytest.raises(StateError):
        gate.submit('BUS-1', 40.0, -74.0)

    assert _stored_count(runtime, 'BUS-1') == 0
    assert runtime.cache.last_accepted_at('BUS-1') is None

    monkeypatch.undo()
    gate.start_tracking('BUS-1')
    assert gate.submit('BUS-1', 40.1, -74.1).rate_limited is False


def test_concurrent_submissions_store_one_sample(runtime, gate):
    gate.start_tracking('BUS-1')
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    errors = []

    def submit(i):
        barrier.wait()
        try:
            results.append(gate.submit('BUS-1', 40.0 + i * 0.001, -74.0))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=submit, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(results) == workers
    assert sum(1 for r in results if not r.rate_limited) == 1
    assert _stored_count(runtime, 'BUS-1') == 1


def test_storage_failure_leaves_cache_untouched(runtime, gate, clock, monkeypatch):
    gate.start_tracking('BUS-1')
    first = gate.submit('BUS-1', 40.0, -74.0).sample
    accepted_at = runtime.cache.last_accepted_at('BUS-1')

    def failing_insert(**kwargs):
        raise StorageError('Database unavailable')

    clock.advance(9)
    monkeypatch.setattr(gate.store, 'insert', failing_insert)
    with pytest.raises(StorageError):
        gate.submit('BUS-1', 40.1, -74.1)

    assert runtime.cache.last_accepted_at('BUS-1') == accepted_at
    assert runtime.cache.get(CacheKind.LATEST_LOCATION, 'BUS-1') == first


@pytest.mark.parametrize(
    'observed_at',
    [
        1760001600000,  # milliseconds
        -1,
        1760001600.0 + 2 * 86400,  # two days ahead
        '10000-01-01T00:00:00Z',
    ],
)
def test_submit_rejects_out_of_range_timestamps(runtime, gate, observed_at):
    gate.start_tracking('BUS-1')

    with pytest.raises(ValidationError):
        gate.submit('BUS-1', 40.0, -74.0, observed_at=observed_at)

    assert _stored_count(runtime, 'BUS-1') == 0


def test_submit_allows_small_clock_skew(gate, clock):
    gate.start_tracking('BUS-1')
    result = gate.submit('BUS-1', 40.0, -74.0, observed_at=clock() + 60)
    assert result.sample.observed_at == clock() + 60


def test_batch_drops_out_of_range_timestamps(runtime, gate, view):
    gate.start_tracking('BUS-1')
    gate.start_tracking('BUS-2')

    result = gate.submit_batch([
        {'vehicle_id': 'BUS-1', 'latitude': 40.0, 'longitude': -74.0, 'observed_at': 1760001600000},
        {'vehicle_id': 'BUS-2', 'latitude': 41.0, 'longitude': -75.0},
    ])

    assert result.processed_count == 1
    assert result.failed_count == 1
    assert _stored_count(runtime, 'BUS-1') == 0
    # Reads stay healthy
    assert len(view.list_active()) == 2


def test_batch_skips_vehicle_stopped_before_write(runtime, gate):
    gate.start_tracking('BUS-1')
    gate.submit_batch([{'vehicle_id': 'BUS-1', 'latitude': 40.0, 'longitude': -74.0}])
    gate.stop_tracking('BUS-1')

    result = gate.submit_batch([{'vehicle_id': 'BUS-1', 'latitude': 40.1, 'longitude': -74.1}])

    assert result.processed_count == 0
    assert runtime.cache.last_accepted_at('BUS-1') is None
