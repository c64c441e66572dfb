"""
Metrics and maintenance API endpoints.

Provides endpoints for:
- GET /api/metrics/dashboard - Fleet summary
- GET /api/metrics/status - Storage pool, cache and store health
- POST /api/metrics/cleanup - Run a retention sweep now
- POST /api/metrics/cache/clear - Drop every cache entry
"""

import logging
import time

from flask import Blueprint, jsonify, request

from fleettrack.api.common import elapsed_ms, get_runtime, int_arg, utc_timestamp

logger = logging.getLogger(__name__)

metrics_bp = Blueprint('metrics', __name__, url_prefix='/api/metrics')


@metrics_bp.route('/dashboard', methods=['GET'])
def get_dashboard():
    """
    Fleet dashboard.

    Returns:
    - Active vehicles and their recent locations (cache first)
    - Store statistics (always live)
    - Cache statistics
    """
    start_time = time.perf_counter()

    dashboard = get_runtime().view.dashboard()

    return jsonify({
        **dashboard,
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@metrics_bp.route('/status', methods=['GET'])
def get_system_status():
    """
    Get system health and status information.

    Returns:
    - Database connectivity and pool accounting
    - Cache statistics
    - Retention sweeper state
    - Recent event counts
    """
    start_time = time.perf_counter()
    runtime = get_runtime()

    database = runtime.database.healthcheck()
    database['type'] = runtime.database.dialect_name

    store_stats = None
    if database['healthy']:
        store_stats = runtime.store.stats()

    events = runtime.recent_events.counts if runtime.recent_events else {}

    return jsonify({
        'status': 'healthy' if database['healthy'] else 'degraded',
        'database': database,
        'store': store_stats,
        'cache': runtime.cache.stats,
        'retention': runtime.sweeper.stats,
        'events': events,
        'config': {
            'min_update_interval_seconds': runtime.gate.min_interval_seconds,
            'batch_max': runtime.gate.batch_max,
            'recency_minutes': runtime.view.recency_minutes,
        },
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@metrics_bp.route('/cleanup', methods=['POST'])
def run_cleanup():
    """
    Run a retention sweep.

    Body (optional): {"retention_days": 1-30, "keep_every_nth": >= 2}
    """
    start_time = time.perf_counter()

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    retention_days = int_arg(data, 'retention_days', None, 1, 30)
    keep_every_nth = int_arg(data, 'keep_every_nth', None, 2)

    result = get_runtime().sweeper.sweep(
        retention_days=retention_days,
        keep_every_nth=keep_every_nth,
    )
    logger.info(f'Manual cleanup removed {result.deleted_count} samples')

    return jsonify({
        'success': True,
        **result.to_dict(),
        'message': f'Cleaned up {result.deleted_count} old location records',
        'timestamp': utc_timestamp(),
        'query_time_ms': elapsed_ms(start_time),
    })


@metrics_bp.route('/cache/clear', methods=['POST'])
def clear_cache():
    """Drop all cached state. Rate-limit windows restart too."""
    get_runtime().cache.invalidate_all()

    return jsonify({
        'success': True,
        'cleared': True,
        'timestamp': utc_timestamp(),
    })
