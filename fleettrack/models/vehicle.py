"""
Vehicle model - durable tracking status of each vehicle.

One row per vehicle id. Rows are never hard-deleted: start/stop tracking
only toggles ``is_active`` and bumps ``updated_at``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fleettrack.models.base import Base, to_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Vehicle(Base):
    """
    A tracked vehicle (typically a bus).

    ``vehicle_id`` is the client-chosen identifier and the primary key,
    so re-tracking an existing id can only ever reactivate the same row.
    """

    __tablename__ = 'vehicles'

    vehicle_id: Mapped[str] = mapped_column(
        String(20),
        primary_key=True,
        comment='Client-chosen vehicle identifier'
    )

    driver_label: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default='Unknown',
        comment='Free-text driver label'
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment='Tracking intent (start/stop toggles this)'
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment='First tracking request'
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment='Bumped on every mutation'
    )

    __table_args__ = (
        # Active fleet query and inactivity scan
        Index('ix_vehicles_active', 'is_active', 'updated_at'),
    )

    def __repr__(self) -> str:
        state = 'active' if self.is_active else 'inactive'
        return f'<Vehicle {self.vehicle_id} {state}>'


@dataclass(frozen=True)
class VehicleRecord:
    """Immutable snapshot of a vehicle row, safe to share through the cache."""
    vehicle_id: str
    driver_label: str
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Any) -> 'VehicleRecord':
        data = row._mapping if hasattr(row, '_mapping') else row
        return cls(
            vehicle_id=data['vehicle_id'],
            driver_label=data['driver_label'],
            is_active=bool(data['is_active']),
            created_at=to_utc(data['created_at']),
            updated_at=to_utc(data['updated_at']),
        )

    def to_dict(self) -> dict:
        return {
            'vehicle_id': self.vehicle_id,
            'driver_label': self.driver_label,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
