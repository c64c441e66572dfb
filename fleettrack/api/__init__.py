"""
API module for FleetTrack.

Provides REST endpoints for:
- Vehicle tracking lifecycle and location ingestion
- Active fleet, latest location and history reads
- Dashboard, system status and maintenance
"""

from fleettrack.api.common import EXTENSION_KEY, get_runtime
from fleettrack.api.metrics import metrics_bp
from fleettrack.api.vehicles import vehicles_bp

__all__ = ['EXTENSION_KEY', 'get_runtime', 'metrics_bp', 'vehicles_bp']
