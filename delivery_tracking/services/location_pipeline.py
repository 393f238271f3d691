"""
Pipeline des positions GPS / Location update pipeline.
Validation -> ordre -> filtrage -> enrichissement (vitesse, cap, acceleration) -> stockage.
Validation -> ordering -> throttling -> enrichment (speed, bearing, acceleration) -> storage.
"""

import logging
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.exceptions import LocationValidationError, StaleSampleError, StorageUnavailableError
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.schemas.tracking import LocationUpdateCreate
from delivery_tracking.utils.geo import GeoPoint, bearing_degrees, distance_meters
from delivery_tracking.utils.timeutils import now_iso, parse_iso, to_iso

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Resultat du pipeline / Pipeline outcome."""
    stored: bool
    sample: LocationSample | None = None
    previous: LocationSample | None = None
    reason: str | None = None


def _point(sample: LocationSample) -> GeoPoint:
    return GeoPoint(sample.latitude, sample.longitude)


class LocationPipeline:
    """Ingestion d'une position pour une livraison / Ingests one location report for a delivery.

    L'appelant tient le verrou de la livraison / The caller holds the delivery lock.
    """

    def __init__(
        self,
        db: AsyncSession,
        min_interval_seconds: float | None = None,
        min_distance_meters: float | None = None,
    ):
        self.db = db
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None else settings.MIN_UPDATE_INTERVAL_SECONDS
        )
        self.min_distance_meters = (
            min_distance_meters if min_distance_meters is not None else settings.MIN_UPDATE_DISTANCE_METERS
        )

    @staticmethod
    def validate(payload: LocationUpdateCreate | dict) -> LocationUpdateCreate:
        """Valider une position brute / Validate a raw location payload."""
        if isinstance(payload, LocationUpdateCreate):
            return payload
        try:
            return LocationUpdateCreate.model_validate(payload)
        except ValidationError as exc:
            raise LocationValidationError(
                "Invalid location update",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

    async def last_sample(self, delivery_id: int) -> LocationSample | None:
        """Derniere position stockee (horodatage client le plus recent) / Latest stored sample."""
        result = await self.db.execute(
            select(LocationSample)
            .where(LocationSample.delivery_id == delivery_id)
            .order_by(LocationSample.timestamp.desc(), LocationSample.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def process(self, delivery_id: int, payload: LocationUpdateCreate | dict) -> PipelineResult:
        data = self.validate(payload)
        timestamp = to_iso(data.timestamp)

        try:
            previous = await self.last_sample(delivery_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError("Location storage unavailable") from exc

        sample = LocationSample(
            delivery_id=delivery_id,
            latitude=data.latitude,
            longitude=data.longitude,
            altitude=data.altitude,
            accuracy=data.accuracy,
            reported_speed=data.speed,
            battery_level=data.battery_level,
            signal_strength=data.signal_strength,
            timestamp=timestamp,
            received_at=now_iso(),
        )

        if previous is not None:
            elapsed = (parse_iso(timestamp) - parse_iso(previous.timestamp)).total_seconds()
            if elapsed < 0:
                raise StaleSampleError(
                    "Sample older than the last stored sample",
                    details={"timestamp": timestamp, "last_timestamp": previous.timestamp},
                )

            distance = distance_meters(_point(previous), _point(sample))
            if elapsed < self.min_interval_seconds and distance < self.min_distance_meters:
                logger.debug(
                    "delivery %s: sample skipped (%.0fs, %.1fm since last)", delivery_id, elapsed, distance,
                )
                return PipelineResult(stored=False, previous=previous, reason="insignificant_change")

            if elapsed == 0:
                # Vitesse indefinie / Speed undefined
                raise StaleSampleError(
                    "Out-of-order sample: same timestamp as the last stored sample",
                    details={"timestamp": timestamp, "distance_meters": round(distance, 1)},
                )

            self._enrich(sample, previous, distance, elapsed)

        self.db.add(sample)
        try:
            await self.db.flush()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError("Location storage unavailable") from exc
        return PipelineResult(stored=True, sample=sample, previous=previous)

    @staticmethod
    def _enrich(sample: LocationSample, previous: LocationSample, distance: float, elapsed: float) -> None:
        hours = elapsed / 3600.0
        speed = (distance / 1000.0) / hours
        sample.distance_since_last = round(distance, 2)
        sample.computed_speed = round(speed, 2)
        sample.bearing = round(bearing_degrees(_point(previous), _point(sample)), 2) % 360.0
        if previous.computed_speed is not None:
            sample.acceleration = round((speed - previous.computed_speed) / hours, 2)
