"""
Read-side analytics for FleetTrack.

Aggregate fleet views (cache-first, storage fallback) and NumPy-based
track downsampling and summaries for history displays.
"""

from fleettrack.analytics.aggregate_view import ActiveVehicle, AggregateView
from fleettrack.analytics.track_analysis import (
    TrackSummary,
    downsample,
    downsample_indices,
    summarize_track,
)

__all__ = [
    'ActiveVehicle',
    'AggregateView',
    'TrackSummary',
    'downsample',
    'downsample_indices',
    'summarize_track',
]
