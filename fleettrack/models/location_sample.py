"""
LocationSample model - append-only time-series of GPS observations.

Every accepted location update is recorded here. Schema optimized for:
- Fast batch inserts (append-only pattern)
- Efficient time-range queries per vehicle
- Range-bounded retention scans
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fleettrack.models.base import Base, epoch_to_iso


def new_sample_id() -> str:
    return str(uuid.uuid4())


class LocationSample(Base):
    """
    One GPS observation for a vehicle.

    Timestamps are Unix epoch seconds: cheap to compare and index, and free
    of timezone handling differences between SQLite and PostgreSQL.
    ``observed_at`` may come from the client; ``recorded_at`` is always the
    server write time and drives retention.
    """

    __tablename__ = 'location_samples'

    sample_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_sample_id,
        comment='UUID assigned at write time'
    )

    vehicle_id: Mapped[str] = mapped_column(
        String(20),
        ForeignKey('vehicles.vehicle_id', ondelete='CASCADE'),
        nullable=False,
        comment='Owning vehicle'
    )

    # Position (WGS84)
    latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Latitude in decimal degrees'
    )

    longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Longitude in decimal degrees'
    )

    accuracy: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment='Reported accuracy radius in meters'
    )

    observed_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Unix timestamp of the observation'
    )

    recorded_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Unix timestamp of the server write'
    )

    # Set on rows kept as the sparse skeleton of aged history
    retained: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment='Kept by a retention sweep'
    )

    __table_args__ = (
        # Per-vehicle history and latest-sample lookups
        Index('ix_location_samples_vehicle_time', 'vehicle_id', 'observed_at'),
        # Fleet-wide recency windows (active list, recent locations)
        Index('ix_location_samples_observed', 'observed_at'),
        # Retention scans
        Index('ix_location_samples_recorded', 'recorded_at'),
    )

    def __repr__(self) -> str:
        return f'<LocationSample {self.vehicle_id} @ {self.observed_at}>'


@dataclass(frozen=True)
class SampleRecord:
    """Immutable snapshot of a location sample."""
    sample_id: Optional[str]
    vehicle_id: str
    latitude: float
    longitude: float
    accuracy: float
    observed_at: float
    recorded_at: float

    @classmethod
    def from_row(cls, row: Any) -> 'SampleRecord':
        data = row._mapping if hasattr(row, '_mapping') else row
        return cls(
            sample_id=data['sample_id'],
            vehicle_id=data['vehicle_id'],
            latitude=float(data['latitude']),
            longitude=float(data['longitude']),
            accuracy=float(data['accuracy'] or 0),
            observed_at=float(data['observed_at']),
            recorded_at=float(data['recorded_at']),
        )

    @property
    def sort_key(self) -> tuple:
        """Ordering within a vehicle: observation time, then write time."""
        return (self.observed_at, self.recorded_at)

    def is_newer_than(self, other: Optional['SampleRecord']) -> bool:
        return other is None or self.sort_key > other.sort_key

    def to_dict(self) -> dict:
        return {
            'sample_id': self.sample_id,
            'vehicle_id': self.vehicle_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy': self.accuracy,
            'observed_at': epoch_to_iso(self.observed_at),
            'recorded_at': epoch_to_iso(self.recorded_at),
        }
