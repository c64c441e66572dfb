"""
Vehicle API endpoints.

Provides endpoints for:
- POST /api/vehicles/start-tracking - Register or reactivate a vehicle
- POST /api/vehicles/stop-tracking - Stop tracking a vehicle
- POST /api/vehicles/<vehicle_id>/location - Submit one location update
- POST /api/vehicles/locations/batch - Submit up to 50 location updates
- GET /api/vehicles/<vehicle_id>/location - Latest location
- GET /api/vehicles/<vehicle_id>/locations - Raw samples, newest first
- GET /api/vehicles/locations/recent - Recent samples per vehicle
- GET /api/vehicles/active - Active vehicles with latest locations
- GET /api/vehicles/<vehicle_id>/history - Downsampled position history

Errors are raised as TrackerError subclasses and rendered by the app.
"""

import logging
import time

from flask import Blueprint, jsonify, request

from fleettrack.api.common import elapsed_ms, get_runtime, int_arg, json_body, utc_timestamp
from fleettrack.config import config
from fleettrack.errors import ValidationError

logger = logging.getLogger(__name__)

vehicles_bp = Blueprint('vehicles', __name__, url_prefix='/api/vehicles')


# -----------------------------------------------------------------------------
# Tracking lifecycle
# -----------------------------------------------------------------------------

@vehicles_bp.route('/start-tracking', methods=['POST'])
def start_tracking():
    """
    Start tracking a vehicle.

    Body: {"vehicle_id": str, "driver_label": str (optional)}

    Creates the vehicle on first call, reactivates it afterwards.
    """
    data = json_body()
    result = get_runtime().gate.start_tracking(
        data.get('vehicle_id'),
        data.get('driver_label'),
    )

    return jsonify({
        'success': True,
        **result.to_dict(),
        'message': f'Started tracking vehicle {result.vehicle.vehicle_id}',
        'timestamp': utc_timestamp(),
    })


@vehicles_bp.route('/stop-tracking', methods=['POST'])
def stop_tracking():
    """
    Stop tracking a vehicle.

    Body: {"vehicle_id": str}
    """
    data = json_body()
    vehicle = get_runtime().gate.stop_tracking(data.get('vehicle_id'))

    return jsonify({
        'success': True,
        'vehicle': vehicle.to_dict(),
        'message': f'Stopped tracking vehicle {vehicle.vehicle_id}',
        'timestamp': utc_timestamp(),
    })


# -----------------------------------------------------------------------------
# Location ingestion
# -----------------------------------------------------------------------------

@vehicles_bp.route('/<vehicle_id>/location', methods=['POST'])
def submit_location(vehicle_id: str):
    """
    Submit a location update.

    Body: {"latitude": float, "longitude": float,
           "accuracy": float (optional), "observed_at": epoch or ISO (optional)}

    A rate-limited update still reports accepted=true with
    reason="rate_limited" so clients don't retry it.
    """
    data = json_body()
    result = get_runtime().gate.submit(
        vehicle_id,
        data.get('latitude'),
        data.get('longitude'),
        data.get('accuracy'),
        data.get('observed_at', data.get('timestamp')),
    )

    return jsonify({
        'success': True,
        **result.to_dict(),
        'timestamp': utc_timestamp(),
    })


@vehicles_bp.route('/locations/batch', methods=['POST'])
def submit_batch():
    """
    Submit many location updates at once.

    Body: {"locations": [{"vehicle_id", "latitude", "longitude",
                          "accuracy"?, "observed_at"?}, ...]}

    Invalid entries are counted in failed_count and skipped.
    """
    start_time = time.perf_counter()

    data = json_body()
    locations = data.get('locations')
    if not isinstance(locations, list):
        raise ValidationError('Locations array is required')

    result = get_runtime().gate.submit_batch(locations)

    return jsonify({
        'success': True,
        **result.to_dict(),
        'message': f'Processed {result.processed_count} location updates',
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

@vehicles_bp.route('/<vehicle_id>/location', methods=['GET'])
def get_latest_location(vehicle_id: str):
    """Latest known location for one vehicle."""
    start_time = time.perf_counter()

    sample = get_runtime().view.latest_location(vehicle_id)

    return jsonify({
        'location': sample.to_dict(),
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@vehicles_bp.route('/<vehicle_id>/locations', methods=['GET'])
def list_locations(vehicle_id: str):
    """
    Raw location samples for one vehicle, newest first.

    Query parameters:
    - limit: int, max samples to return (1-500, default 50)
    """
    start_time = time.perf_counter()
    views = config.views

    limit = int_arg(request.args, 'limit', views.sample_list_limit, 1, views.sample_list_max)
    samples = get_runtime().view.samples(vehicle_id, limit=limit)

    return jsonify({
        'vehicle_id': vehicle_id,
        'locations': [s.to_dict() for s in samples],
        'count': len(samples),
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@vehicles_bp.route('/locations/recent', methods=['GET'])
def recent_locations():
    """
    Recent samples for every vehicle.

    Query parameters:
    - minutes: int, trailing window (1-1440, default 30)
    - max_per_vehicle: int, samples kept per vehicle (1-100, default 10)
    """
    start_time = time.perf_counter()
    views = config.views

    minutes = int_arg(request.args, 'minutes', views.recent_minutes, 1, views.recent_max_minutes)
    max_per_vehicle = int_arg(
        request.args, 'max_per_vehicle',
        views.recent_max_per_vehicle, 1, views.recent_per_vehicle_limit,
    )
    grouped = get_runtime().view.recent_locations(minutes=minutes, max_per_vehicle=max_per_vehicle)

    return jsonify({
        'vehicles': {
            vehicle_id: [s.to_dict() for s in samples]
            for vehicle_id, samples in grouped.items()
        },
        'count': len(grouped),
        'minutes': minutes,
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@vehicles_bp.route('/active', methods=['GET'])
def list_active():
    """
    List actively tracked vehicles with their latest location.

    Served from cache when fresh; newest fixes first.
    """
    start_time = time.perf_counter()

    vehicles = get_runtime().view.list_active()

    return jsonify({
        'vehicles': [v.to_dict() for v in vehicles],
        'count': len(vehicles),
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@vehicles_bp.route('/<vehicle_id>/history', methods=['GET'])
def get_history(vehicle_id: str):
    """
    Position history for one vehicle.

    Query parameters:
    - hours: int, trailing window (1-168, default 24)
    - max_points: int, cap on returned samples (1-1000, default 100)
    """
    start_time = time.perf_counter()
    views = config.views

    hours = int_arg(request.args, 'hours', views.history_hours, 1, views.history_max_hours)
    max_points = int_arg(
        request.args, 'max_points', views.history_max_points, 1, views.history_points_limit
    )

    history = get_runtime().view.history(vehicle_id, hours=hours, max_points=max_points)

    return jsonify({
        **history,
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })
