import pytest


def _start(client, vehicle_id='BUS-1', **extra):
    return client.post('/api/vehicles/start-tracking', json={'vehicle_id': vehicle_id, **extra})


def _assert_error(response, status, kind):
    assert response.status_code == status
    body = response.get_json()
    assert body['error'] == kind
    assert body['message']
    assert body['timestamp']


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


def test_start_and_stop_tracking(client):
    response = _start(client, driver_label='Jane Doe')
    body = response.get_json()

    assert response.status_code == 200
    assert body['created'] is True
    assert body['vehicle']['driver_label'] == 'Jane Doe'
    assert _start(client).get_json()['created'] is False

    response = client.post('/api/vehicles/stop-tracking', json={'vehicle_id': 'BUS-1'})
    assert response.status_code == 200
    assert response.get_json()['vehicle']['is_active'] is False


def test_submit_location_and_rate_limit(client, clock):
    _start(client)

    first = client.post('/api/vehicles/BUS-1/location', json={'latitude': 40.7, 'longitude': -74.0})
    assert first.status_code == 200
    assert first.get_json()['accepted'] is True
    assert first.get_json()['rate_limited'] is False

    clock.advance(5)
    second = client.post('/api/vehicles/BUS-1/location', json={'latitude': 40.8, 'longitude': -74.1})
    body = second.get_json()
    assert second.status_code == 200
    assert body['accepted'] is True
    assert body['rate_limited'] is True
    assert body['reason'] == 'rate_limited'


def test_error_shapes(client):
    _assert_error(
        client.post('/api/vehicles/NOPE/location', json={'latitude': 1, 'longitude': 1}),
        404, 'not_found',
    )

    _start(client)
    _assert_error(
        client.post('/api/vehicles/BUS-1/location', json={'latitude': 100, 'longitude': 1}),
        400, 'validation_error',
    )

    client.post('/api/vehicles/stop-tracking', json={'vehicle_id': 'BUS-1'})
    _assert_error(
        client.post('/api/vehicles/BUS-1/location', json={'latitude': 1, 'longitude': 1}),
        409, 'state_error',
    )

    _assert_error(client.post('/api/vehicles/start-tracking', data='nope'), 400, 'validation_error')
    _assert_error(client.get('/api/nowhere'), 404, 'not_found')
    _assert_error(client.get('/api/vehicles/start-tracking'), 405, 'method_not_allowed')


def test_batch_endpoint(client):
    _start(client)
    locations = [{'vehicle_id': 'BUS-1', 'latitude': 40.0 + i / 100, 'longitude': -74.0} for i in range(4)]
    locations.append({'vehicle_id': 'BUS-1', 'latitude': 200, 'longitude': -74.0})

    response = client.post('/api/vehicles/locations/batch', json={'locations': locations})
    body = response.get_json()

    assert response.status_code == 200
    assert body['processed_count'] == 4
    assert body['failed_count'] == 1


def test_batch_limit(client):
    locations = [{'vehicle_id': 'BUS-1', 'latitude': 0, 'longitude': 0}] * 51
    _assert_error(
        client.post('/api/vehicles/locations/batch', json={'locations': locations}),
        400, 'validation_error',
    )


def test_active_and_latest_location(client):
    _start(client, 'BUS-1')
    _start(client, 'BUS-2')
    client.post('/api/vehicles/BUS-1/location', json={'latitude': 40.7, 'longitude': -74.0, 'accuracy': 4})

    active = client.get('/api/vehicles/active').get_json()
    assert active['count'] == 2
    assert active['vehicles'][0]['vehicle']['vehicle_id'] == 'BUS-1'
    assert active['vehicles'][0]['latest_location']['accuracy'] == 4
    assert active['vehicles'][1]['latest_location'] is None

    latest = client.get('/api/vehicles/BUS-1/location')
    assert latest.status_code == 200
    assert latest.get_json()['location']['latitude'] == 40.7

    _assert_error(client.get('/api/vehicles/BUS-2/location'), 404, 'not_found')


def test_history_endpoint(client, seed_samples):
    _start(client)
    seed_samples('BUS-1', 237)

    response = client.get('/api/vehicles/BUS-1/history?hours=24&max_points=100')
    body = response.get_json()

    assert response.status_code == 200
    assert body['total_sample_count'] == 237
    assert body['sampled_point_count'] <= 100
    assert body['stride'] == 3
    assert body['time_range']['hours'] == 24


@pytest.mark.parametrize('query', ['hours=0', 'hours=169', 'max_points=0', 'max_points=1001', 'hours=abc'])
def test_history_parameter_bounds(client, query):
    _start(client)
    _assert_error(client.get(f'/api/vehicles/BUS-1/history?{query}'), 400, 'validation_error')


def test_dashboard_and_status(client):
    _start(client)
    client.post('/api/vehicles/BUS-1/location', json={'latitude': 40.7, 'longitude': -74.0})

    dashboard = client.get('/api/metrics/dashboard').get_json()
    assert dashboard['total_active_vehicles'] == 1
    assert dashboard['statistics']['total_samples'] == 1

    status = client.get('/api/metrics/status').get_json()
    assert status['status'] == 'healthy'
    assert status['database']['healthy'] is True
    assert status['database']['type'] == 'sqlite'
    assert status['events']['location.accepted'] == 1


def test_cleanup_endpoint(client, seed_samples):
    _start(client)
    seed_samples('BUS-1', 100, age=10 * 86400)

    response = client.post('/api/metrics/cleanup', json={'retention_days': 7, 'keep_every_nth': 10})
    body = response.get_json()

    assert response.status_code == 200
    assert body['deleted_count'] == 90
    assert body['retained_count'] == 10

    _assert_error(
        client.post('/api/metrics/cleanup', json={'retention_days': 31}),
        400, 'validation_error',
    )
    _assert_error(
        client.post('/api/metrics/cleanup', json={'keep_every_nth': 1}),
        400, 'validation_error',
    )


def test_cache_clear(client, runtime):
    _start(client)
    client.post('/api/vehicles/BUS-1/location', json={'latitude': 40.7, 'longitude': -74.0})

    response = client.post('/api/metrics/cache/clear')
    assert response.get_json()['cleared'] is True
    assert runtime.cache.last_accepted_at('BUS-1') is None


def test_cors_headers(client):
    response = client.get('/api/vehicles/active', headers={'Origin': 'http://example.com'})
    assert response.headers.get('Access-Control-Allow-Origin') == '*'


def test_millisecond_timestamp_is_rejected(client):
    _start(client)
    _assert_error(
        client.post(
            '/api/vehicles/BUS-1/location',
            json={'latitude': 40.7, 'longitude': -74.0, 'observed_at': 1760001600000},
        ),
        400, 'validation_error',
    )

    active = client.get('/api/vehicles/active')
    assert active.status_code == 200
    assert active.get_json()['vehicles'][0]['latest_location'] is None
    assert client.get('/api/vehicles/BUS-1/history').status_code == 200


def test_location_listing_endpoint(client, seed_samples):
    _start(client)
    seed_samples('BUS-1', 60)

    body = client.get('/api/vehicles/BUS-1/locations').get_json()
    assert body['count'] == 50
    observed = [s['observed_at'] for s in body['locations']]
    assert observed == sorted(observed, reverse=True)

    body = client.get('/api/vehicles/BUS-1/locations?limit=5').get_json()
    assert body['vehicle_id'] == 'BUS-1'
    assert body['count'] == 5

    _assert_error(client.get('/api/vehicles/NOPE/locations'), 404, 'not_found')


@pytest.mark.parametrize('query', ['limit=0', 'limit=501', 'limit=abc'])
def test_location_listing_bounds(client, query):
    _start(client)
    _assert_error(client.get(f'/api/vehicles/BUS-1/locations?{query}'), 400, 'validation_error')


def test_recent_locations_endpoint(client, seed_samples):
    _start(client, 'BUS-1')
    _start(client, 'BUS-2')
    seed_samples('BUS-1', 15)
    seed_samples('BUS-2', 3)

    body = client.get('/api/vehicles/locations/recent?max_per_vehicle=5').get_json()
    assert body['count'] == 2
    assert body['minutes'] == 30
    assert len(body['vehicles']['BUS-1']) == 5
    assert len(body['vehicles']['BUS-2']) == 3

    body = client.get('/api/vehicles/locations/recent?minutes=5').get_json()
    assert len(body['vehicles']['BUS-1']) == 6


@pytest.mark.parametrize(
    'query', ['minutes=0', 'minutes=1441', 'max_per_vehicle=0', 'max_per_vehicle=101']
)
def test_recent_locations_bounds(client, query):
    _assert_error(client.get(f'/api/vehicles/locations/recent?{query}'), 400, 'validation_error')
