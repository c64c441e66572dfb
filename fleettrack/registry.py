"""
Vehicle registry - durable record of vehicles and their tracking status.

All reads and writes go through the pooled ``Database`` client. Creation
is an upsert keyed on the vehicle id, so concurrent start-tracking calls
for the same id can only ever produce one row.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, exists, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from fleettrack.config import config
from fleettrack.errors import NotFoundError
from fleettrack.models import Database, LocationSample, Vehicle, VehicleRecord

logger = logging.getLogger(__name__)

vehicles = Vehicle.__table__
samples = LocationSample.__table__


class VehicleRegistry:
    """Reads and mutates Vehicle rows."""

    def __init__(
        self,
        database: Database,
        default_label: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.db = database
        self.default_label = default_label or config.ingestion.default_driver_label
        self.clock = clock or time.time

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def find(self, vehicle_id: str) -> Optional[VehicleRecord]:
        result = self.db.execute(
            select(vehicles).where(vehicles.c.vehicle_id == vehicle_id)
        )
        return VehicleRecord.from_row(result.rows[0]) if result.rows else None

    def find_many(self, vehicle_ids: Iterable[str]) -> Dict[str, VehicleRecord]:
        """Look up several vehicles in one query."""
        ids = sorted(set(vehicle_ids))
        if not ids:
            return {}
        result = self.db.execute(
            select(vehicles).where(vehicles.c.vehicle_id.in_(ids))
        )
        records = [VehicleRecord.from_row(row) for row in result.rows]
        return {r.vehicle_id: r for r in records}

    def list_active(self) -> List[VehicleRecord]:
        result = self.db.execute(
            select(vehicles)
            .where(vehicles.c.is_active.is_(True))
            .order_by(vehicles.c.updated_at.desc())
        )
        return [VehicleRecord.from_row(row) for row in result.rows]

    def start_tracking(
        self,
        vehicle_id: str,
        driver_label: Optional[str] = None,
    ) -> Tuple[VehicleRecord, bool]:
        """
        Create the vehicle, or reactivate it if it already exists.

        The driver label is only overwritten when one is given.
        Returns (vehicle, created).
        """
        now = self._now()
        insert_fn = postgresql_insert if self.db.dialect_name == 'postgresql' else sqlite_insert

        stmt = insert_fn(vehicles).values(
            vehicle_id=vehicle_id,
            driver_label=driver_label or self.default_label,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        set_ = {
            'is_active': True,
            'updated_at': stmt.excluded.updated_at,
        }
        if driver_label:
            set_['driver_label'] = stmt.excluded.driver_label

        stmt = stmt.on_conflict_do_update(
            index_elements=['vehicle_id'],
            set_=set_,
        ).returning(*vehicles.c)

        def _upsert(connection):
            existed = connection.execute(
                select(vehicles.c.vehicle_id).where(vehicles.c.vehicle_id == vehicle_id)
            ).first() is not None
            row = connection.execute(stmt).one()
            return VehicleRecord.from_row(row), not existed

        vehicle, created = self.db.run(_upsert)
        if created:
            logger.info(f'Created new vehicle: {vehicle_id}')
        else:
            logger.info(f'Reactivated vehicle: {vehicle_id}')
        return vehicle, created

    def set_active(self, vehicle_id: str, is_active: bool) -> VehicleRecord:
        """Toggle tracking status. Raises NotFoundError for unknown ids."""
        result = self.db.execute(
            update(vehicles)
            .where(vehicles.c.vehicle_id == vehicle_id)
            .values(is_active=is_active, updated_at=self._now())
            .returning(*vehicles.c)
        )
        if not result.rows:
            raise NotFoundError(f'Vehicle {vehicle_id} not found')
        return VehicleRecord.from_row(result.rows[0])

    def deactivate_silent(self, silent_since: float) -> List[str]:
        """
        Mark inactive every active vehicle that has been quiet since
        ``silent_since`` (epoch seconds).

        A vehicle is quiet when neither its status changed nor a sample was
        recorded for it after the cutoff. Returns the affected ids.
        """
        cutoff = datetime.fromtimestamp(silent_since, tz=timezone.utc)
        recent_sample = exists().where(
            and_(
                samples.c.vehicle_id == vehicles.c.vehicle_id,
                samples.c.recorded_at >= silent_since,
            )
        )
        result = self.db.execute(
            update(vehicles)
            .where(vehicles.c.is_active.is_(True))
            .where(vehicles.c.updated_at < cutoff)
            .where(~recent_sample)
            .values(is_active=False, updated_at=self._now())
            .returning(vehicles.c.vehicle_id)
        )
        vehicle_ids = sorted(row.vehicle_id for row in result.rows)
        if vehicle_ids:
            logger.info(f'Deactivated {len(vehicle_ids)} silent vehicles: {", ".join(vehicle_ids)}')
        return vehicle_ids
