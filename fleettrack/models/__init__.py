"""
Database models for FleetTrack.

Schema designed for high-frequency location ingestion with these priorities:
1. Fast appends (single and batch inserts)
2. Cheap "latest sample per vehicle" lookups
3. Range-bounded retention scans that never lock the table
"""

from fleettrack.models.base import (
    Base,
    Database,
    PoolStatus,
    QueryResult,
    epoch_to_iso,
    is_transient,
    to_utc,
)
from fleettrack.models.location_sample import LocationSample, SampleRecord, new_sample_id
from fleettrack.models.vehicle import Vehicle, VehicleRecord, utcnow

__all__ = [
    'Base',
    'Database',
    'PoolStatus',
    'QueryResult',
    'epoch_to_iso',
    'is_transient',
    'to_utc',
    'LocationSample',
    'SampleRecord',
    'new_sample_id',
    'Vehicle',
    'VehicleRecord',
    'utcnow',
]
