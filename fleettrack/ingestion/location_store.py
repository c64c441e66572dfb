"""
Location store - durable append-only log of location samples.

This is the time-series side of the schema. Samples are inserted (singly
or in one multi-row statement), read back per vehicle by time range, and
thinned out by the retention sweep. They are never updated apart from the
retention marker.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update

from fleettrack.models import (
    Database,
    LocationSample,
    SampleRecord,
    Vehicle,
    VehicleRecord,
    epoch_to_iso,
    new_sample_id,
)

logger = logging.getLogger(__name__)

samples = LocationSample.__table__
vehicles = Vehicle.__table__

SAMPLE_COLUMNS = (
    'sample_id',
    'vehicle_id',
    'latitude',
    'longitude',
    'accuracy',
    'observed_at',
    'recorded_at',
    'retained',
)


def _recency_rank():
    """Per-vehicle rank, 1 = most recent observation."""
    return func.row_number().over(
        partition_by=samples.c.vehicle_id,
        order_by=(samples.c.observed_at.desc(), samples.c.recorded_at.desc()),
    )


class LocationStore:
    """Reads and writes LocationSample rows through the storage client."""

    def __init__(self, database: Database):
        self.db = database

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(
        self,
        vehicle_id: str,
        latitude: float,
        longitude: float,
        accuracy: float,
        observed_at: float,
        recorded_at: float,
    ) -> SampleRecord:
        """Append one sample and return it as written."""
        result = self.db.execute(
            insert(samples)
            .values(
                sample_id=new_sample_id(),
                vehicle_id=vehicle_id,
                latitude=latitude,
                longitude=longitude,
                accuracy=accuracy,
                observed_at=observed_at,
                recorded_at=recorded_at,
                retained=False,
            )
            .returning(*samples.c)
        )
        return SampleRecord.from_row(result.rows[0])

    def batch_insert(self, entries: Iterable[dict]) -> List[SampleRecord]:
        """
        Append many samples in one statement.

        Each entry carries vehicle_id, latitude, longitude, accuracy,
        observed_at and recorded_at. Sample ids are assigned here.
        """
        rows = [
            (
                new_sample_id(),
                e['vehicle_id'],
                e['latitude'],
                e['longitude'],
                e['accuracy'],
                e['observed_at'],
                e['recorded_at'],
                False,
            )
            for e in entries
        ]
        if not rows:
            return []

        inserted = self.db.batch_insert(samples, SAMPLE_COLUMNS, rows)
        logger.debug(f'Batch inserted {len(inserted)} location samples')
        return [SampleRecord.from_row(row) for row in inserted]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def latest(self, vehicle_id: str) -> Optional[SampleRecord]:
        result = self.db.execute(
            select(samples)
            .where(samples.c.vehicle_id == vehicle_id)
            .order_by(samples.c.observed_at.desc(), samples.c.recorded_at.desc())
            .limit(1)
        )
        return SampleRecord.from_row(result.rows[0]) if result.rows else None

    def history(self, vehicle_id: str, since: float) -> List[SampleRecord]:
        """All samples for a vehicle observed at or after ``since``, oldest first."""
        result = self.db.execute(
            select(samples)
            .where(samples.c.vehicle_id == vehicle_id)
            .where(samples.c.observed_at >= since)
            .order_by(samples.c.observed_at.asc(), samples.c.recorded_at.asc())
        )
        return [SampleRecord.from_row(row) for row in result.rows]

    def list_for_vehicle(self, vehicle_id: str, limit: int) -> List[SampleRecord]:
        """Raw samples for one vehicle, newest first."""
        result = self.db.execute(
            select(samples)
            .where(samples.c.vehicle_id == vehicle_id)
            .order_by(samples.c.observed_at.desc(), samples.c.recorded_at.desc())
            .limit(limit)
        )
        return [SampleRecord.from_row(row) for row in result.rows]

    def recent(self, since: float, max_per_vehicle: int) -> Dict[str, List[SampleRecord]]:
        """
        Up to ``max_per_vehicle`` most recent samples per vehicle, observed
        at or after ``since``. Grouped by vehicle id, newest first.
        """
        ranked = (
            select(samples, _recency_rank().label('rn'))
            .where(samples.c.observed_at >= since)
            .subquery('recent')
        )
        stmt = (
            select(ranked)
            .where(ranked.c.rn <= max_per_vehicle)
            .order_by(ranked.c.vehicle_id, ranked.c.rn)
        )

        grouped: Dict[str, List[SampleRecord]] = {}
        for row in self.db.execute(stmt).rows:
            sample = SampleRecord.from_row(row)
            grouped.setdefault(sample.vehicle_id, []).append(sample)
        return grouped

    def active_with_latest(
        self,
        since: float,
    ) -> List[Tuple[VehicleRecord, Optional[SampleRecord]]]:
        """
        Active vehicles joined with their most recent sample in one query.

        Only samples observed at or after ``since`` are considered; a vehicle
        without one is still returned, paired with None.
        """
        ranked = (
            select(
                samples.c.vehicle_id.label('ranked_vehicle_id'),
                samples.c.sample_id,
                samples.c.latitude,
                samples.c.longitude,
                samples.c.accuracy,
                samples.c.observed_at,
                samples.c.recorded_at,
                _recency_rank().label('rn'),
            )
            .where(samples.c.observed_at >= since)
            .subquery('ranked')
        )
        stmt = (
            select(
                vehicles,
                ranked.c.sample_id,
                ranked.c.latitude,
                ranked.c.longitude,
                ranked.c.accuracy,
                ranked.c.observed_at,
                ranked.c.recorded_at,
            )
            .select_from(
                vehicles.outerjoin(
                    ranked,
                    (ranked.c.ranked_vehicle_id == vehicles.c.vehicle_id) & (ranked.c.rn == 1),
                )
            )
            .where(vehicles.c.is_active.is_(True))
        )

        pairs = []
        for row in self.db.execute(stmt).rows:
            data = row._mapping
            vehicle = VehicleRecord.from_row(row)
            sample = None
            if data['sample_id'] is not None:
                sample = SampleRecord(
                    sample_id=data['sample_id'],
                    vehicle_id=vehicle.vehicle_id,
                    latitude=float(data['latitude']),
                    longitude=float(data['longitude']),
                    accuracy=float(data['accuracy'] or 0),
                    observed_at=float(data['observed_at']),
                    recorded_at=float(data['recorded_at']),
                )
            pairs.append((vehicle, sample))
        return pairs

    def stats(self) -> dict:
        """Store-wide statistics. Always read live."""
        row = self.db.execute(
            select(
                func.count().label('total_samples'),
                func.count(samples.c.vehicle_id.distinct()).label('distinct_vehicles'),
                func.min(samples.c.recorded_at).label('oldest'),
                func.max(samples.c.recorded_at).label('newest'),
            ).select_from(samples)
        ).rows[0]

        return {
            'total_samples': int(row.total_samples or 0),
            'distinct_vehicles': int(row.distinct_vehicles or 0),
            'oldest_record': epoch_to_iso(row.oldest),
            'newest_record': epoch_to_iso(row.newest),
        }

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def apply_retention(self, cutoff: float, keep_every_nth: int) -> Tuple[int, int]:
        """
        Thin out samples recorded before ``cutoff``.

        Per vehicle, not-yet-retained aged samples are ranked by recency;
        every Nth is marked retained and the rest are deleted. Retained rows
        are never ranked again, so a second run deletes nothing.

        Returns (deleted, retained).
        """
        ranked = (
            select(samples.c.sample_id, _recency_rank().label('rn'))
            .where(samples.c.recorded_at < cutoff)
            .where(samples.c.retained.is_(False))
            .subquery('aged')
        )
        keep_ids = select(ranked.c.sample_id).where(ranked.c.rn % keep_every_nth == 0)

        def _work(connection):
            retained = connection.execute(
                update(samples)
                .where(samples.c.sample_id.in_(keep_ids))
                .values(retained=True)
            ).rowcount
            deleted = connection.execute(
                delete(samples)
                .where(samples.c.recorded_at < cutoff)
                .where(samples.c.retained.is_(False))
            ).rowcount
            return deleted, retained

        deleted, retained = self.db.run(_work)
        if deleted or retained:
            logger.info(f'Retention: removed {deleted} aged samples, kept {retained} as history skeleton')
        return deleted, retained
