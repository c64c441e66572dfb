"""
FleetTrack Package.

Real-time vehicle location tracking built with Flask, SQLAlchemy, and NumPy.

Modules:
    api/         REST endpoints for tracking, locations, metrics and maintenance
    models/      SQLAlchemy models (Vehicle, LocationSample) and the pooled storage client
    ingestion/   Validation, rate-limited admission and the location sample store
    analytics/   Cache-first fleet views and NumPy track downsampling
    cache.py     Thread-safe TTL cache shared by the write and read paths
    registry.py  Vehicle rows and tracking status
    retention.py History thinning and inactivity sweeps
    runtime.py   Process-wide component wiring
    config.py    Centralized configuration from environment variables
"""

__version__ = '1.0.0'
