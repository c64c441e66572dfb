"""
FleetTrack Flask Application.

Main entry point for the web service. Initializes:
- Tracker runtime (database schema, cache, ingest gate, views)
- Optional background retention sweeper
- API routes and JSON error handlers

Usage:
    python -m fleettrack.app

Or with gunicorn:
    gunicorn 'fleettrack.app:create_app()'
"""

import logging
import os
from typing import Optional

from flask import Flask
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from fleettrack.api import EXTENSION_KEY, metrics_bp, vehicles_bp
from fleettrack.config import config
from fleettrack.errors import TrackerError
from fleettrack.runtime import TrackerRuntime

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def _error_body(kind: str, message: str) -> dict:
    body = TrackerError(message).to_dict()
    body['error'] = kind
    return body


def create_app(runtime: Optional[TrackerRuntime] = None, start_sweeper: bool = True) -> Flask:
    """
    Application factory for Flask.

    Args:
        runtime: Prebuilt tracker runtime. Built from config when omitted.
        start_sweeper: Whether to start the periodic retention sweeper
                       (only runs if SWEEP_INTERVAL_MINUTES > 0).
                       Set to False for testing.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = config.secret_key
    app.json.sort_keys = False

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    if runtime is None:
        logger.info('Initializing tracker runtime...')
        runtime = TrackerRuntime.build(config)
    app.extensions[EXTENSION_KEY] = runtime

    # Register API blueprints
    app.register_blueprint(vehicles_bp)
    app.register_blueprint(metrics_bp)

    if start_sweeper and runtime.start_background():
        logger.info(
            f'Retention sweeps every {runtime.config.retention.sweep_interval_minutes} min'
        )

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(TrackerError)
    def tracker_error(e: TrackerError):
        if e.status_code >= 500:
            logger.error(f'{e.kind}: {e.message}')
        return e.to_dict(), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return _error_body('not_found', 'Route not found'), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error_body('method_not_allowed', 'Method not allowed'), 405

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return _error_body('http_error', e.description or e.name), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.exception(f'Server error: {e}')
        return _error_body('internal_error', 'Internal server error'), 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    port = int(os.environ.get('PORT', 5000))
    logger.info(f'Starting FleetTrack on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
        threaded=True,
        use_reloader=False,  # Disable reloader to prevent duplicate sweeper threads
    )


if __name__ == '__main__':
    run_development_server()
