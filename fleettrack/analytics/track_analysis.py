"""
Track analysis for vehicle history using NumPy.

Two display-oriented operations on a vehicle's time-ordered samples:

1. Downsampling: fixed-stride thinning that keeps payloads bounded on long
   histories while always keeping the most recent fix
2. Track summary: total distance (vectorized haversine), time span and
   average speed over the full, unthinned window

Neither is a statistical sample - they trade completeness for a bounded,
map-friendly response.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, TypeVar

import numpy as np

EARTH_RADIUS_KM = 6371.0

T = TypeVar('T')


def downsample_indices(count: int, max_points: int) -> np.ndarray:
    """
    Indices to keep when thinning ``count`` points down to ``max_points``.

    Uses stride ``ceil(count / max_points)`` from the oldest point and
    force-includes the newest one. If that would overflow ``max_points``,
    the newest replaces the last strided pick.
    """
    if count <= 0:
        return np.array([], dtype=np.int64)
    if count <= max_points:
        return np.arange(count, dtype=np.int64)

    stride = math.ceil(count / max_points)
    indices = np.arange(0, count, stride, dtype=np.int64)

    if indices[-1] != count - 1:
        if len(indices) < max_points:
            indices = np.append(indices, count - 1)
        else:
            indices[-1] = count - 1

    return indices


def downsample(items: Sequence[T], max_points: int) -> List[T]:
    """Apply ``downsample_indices`` to an oldest-to-newest sequence."""
    return [items[i] for i in downsample_indices(len(items), max_points)]


def stride_for(count: int, max_points: int) -> int:
    return 1 if count <= max_points else math.ceil(count / max_points)


def haversine_km(
    lat1: np.ndarray, lon1: np.ndarray,
    lat2: np.ndarray, lon2: np.ndarray,
) -> np.ndarray:
    """
    Great-circle distance between point arrays in kilometers.

    Vectorized Haversine formula - accurate over short to medium distances.
    """
    lat1_rad = np.radians(lat1)
    lat2_rad = np.radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = np.radians(lon2 - lon1)

    a = (
        np.sin(delta_lat / 2) ** 2 +
        np.cos(lat1_rad) * np.cos(lat2_rad) *
        np.sin(delta_lon / 2) ** 2
    )
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


@dataclass
class TrackSummary:
    """Aggregate figures for one vehicle's track."""
    point_count: int
    distance_km: float
    duration_seconds: float
    first_observed_at: Optional[float]
    last_observed_at: Optional[float]

    @property
    def average_speed_kmh(self) -> Optional[float]:
        if self.duration_seconds <= 0:
            return None
        return self.distance_km / (self.duration_seconds / 3600)

    def to_dict(self) -> dict:
        speed = self.average_speed_kmh
        return {
            'point_count': self.point_count,
            'distance_km': round(self.distance_km, 3),
            'duration_seconds': round(self.duration_seconds, 1),
            'average_speed_kmh': round(speed, 1) if speed is not None else None,
        }


def summarize_track(samples: Sequence) -> TrackSummary:
    """
    Summarize an oldest-to-newest sequence of samples.

    Samples need latitude, longitude and observed_at attributes.
    """
    if not samples:
        return TrackSummary(0, 0.0, 0.0, None, None)

    lats = np.array([s.latitude for s in samples], dtype=np.float64)
    lons = np.array([s.longitude for s in samples], dtype=np.float64)
    times = np.array([s.observed_at for s in samples], dtype=np.float64)

    distance = 0.0
    if len(samples) > 1:
        legs = haversine_km(lats[:-1], lons[:-1], lats[1:], lons[1:])
        distance = float(np.sum(legs))

    return TrackSummary(
        point_count=len(samples),
        distance_km=distance,
        duration_seconds=float(times[-1] - times[0]),
        first_observed_at=float(times[0]),
        last_observed_at=float(times[-1]),
    )
