"""
Location ingestion for FleetTrack.

Handles validating, rate-limiting and writing location updates, and the
durable sample log they land in.
"""

from fleettrack.ingestion.gate import BatchResult, IngestGate, SubmitResult, TrackingResult
from fleettrack.ingestion.location_store import LocationStore

__all__ = ['BatchResult', 'IngestGate', 'LocationStore', 'SubmitResult', 'TrackingResult']
