"""
Registre des geofences / Geofence registry.
Deux cercles par livraison (enlevement, livraison), evenements sur bascule seulement.
Two circles per delivery (pickup, delivery), events on containment flips only.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.models.delivery import Delivery
from delivery_tracking.models.geofence import (
    Geofence,
    GeofenceEvent,
    GeofenceEventType,
    GeofenceKind,
    GeofenceStatus,
)
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.utils.geo import GeoPoint, is_inside_geofence

logger = logging.getLogger(__name__)

PICKUP_GEOFENCE = "pickup_location"
DELIVERY_GEOFENCE = "delivery_location"


@dataclass
class GeofenceCrossing:
    """Bascule de zone et son evenement / Zone flip and its stored event."""
    geofence: Geofence
    event: GeofenceEvent

    @property
    def kind(self) -> GeofenceKind:
        return self.geofence.kind

    @property
    def event_type(self) -> GeofenceEventType:
        return self.event.event_type

    def as_dict(self) -> dict:
        return {
            "geofence_id": self.geofence.id,
            "name": self.geofence.name,
            "kind": self.geofence.kind.value,
            "event": self.event.event_type.value,
            "timestamp": self.event.timestamp,
        }


class GeofenceRegistry:
    """Geofences d'une livraison / Delivery geofences."""

    def __init__(self, db: AsyncSession, radius_meters: float | None = None):
        self.db = db
        self.radius_meters = radius_meters if radius_meters is not None else settings.GEOFENCE_RADIUS_METERS

    async def create_for_delivery(self, delivery: Delivery) -> list[Geofence]:
        """Creer les zones enlevement / livraison / Create pickup and delivery zones."""
        geofences = [
            Geofence(
                delivery_id=delivery.id,
                kind=GeofenceKind.PICKUP,
                name=PICKUP_GEOFENCE,
                center_latitude=delivery.pickup_latitude,
                center_longitude=delivery.pickup_longitude,
                radius_meters=self.radius_meters,
                status=GeofenceStatus.OUTSIDE,
                is_active=True,
            ),
            Geofence(
                delivery_id=delivery.id,
                kind=GeofenceKind.DELIVERY,
                name=DELIVERY_GEOFENCE,
                center_latitude=delivery.delivery_latitude,
                center_longitude=delivery.delivery_longitude,
                radius_meters=self.radius_meters,
                status=GeofenceStatus.OUTSIDE,
                is_active=True,
            ),
        ]
        self.db.add_all(geofences)
        await self.db.flush()
        return geofences

    async def active_for(self, delivery_id: int) -> list[Geofence]:
        result = await self.db.execute(
            select(Geofence)
            .where(Geofence.delivery_id == delivery_id, Geofence.is_active.is_(True))
            .order_by(Geofence.id)
        )
        return list(result.scalars().all())

    async def evaluate(self, delivery_id: int, sample: LocationSample) -> list[GeofenceCrossing]:
        """Evaluer une position contre chaque zone active / Check a sample against each active zone.

        Un evenement par bascule outside->inside (enter) ou inside->outside (exit),
        rien en regime stable.
        """
        point = GeoPoint(sample.latitude, sample.longitude)
        crossings: list[GeofenceCrossing] = []
        for geofence in await self.active_for(delivery_id):
            inside = is_inside_geofence(point, geofence)
            new_status = GeofenceStatus.INSIDE if inside else GeofenceStatus.OUTSIDE
            if new_status == geofence.status:
                continue

            event_type = GeofenceEventType.ENTER if inside else GeofenceEventType.EXIT
            geofence.status = new_status
            geofence.last_event_at = sample.timestamp
            event = GeofenceEvent(
                geofence_id=geofence.id,
                delivery_id=delivery_id,
                sample_id=sample.id,
                event_type=event_type,
                timestamp=sample.timestamp,
            )
            self.db.add(event)
            crossings.append(GeofenceCrossing(geofence=geofence, event=event))
            logger.info("delivery %s: geofence %s %s", delivery_id, geofence.name, event_type.value)

        if crossings:
            await self.db.flush()
        return crossings

    async def deactivate(self, delivery_id: int) -> int:
        """Desactiver les zones (statut terminal) / Deactivate zones (terminal status)."""
        result = await self.db.execute(
            update(Geofence)
            .where(Geofence.delivery_id == delivery_id, Geofence.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def status_for(self, delivery_id: int) -> dict[str, str]:
        """Vue de confinement courante / Current containment view."""
        result = await self.db.execute(
            select(Geofence).where(Geofence.delivery_id == delivery_id).order_by(Geofence.id)
        )
        return {geofence.name: geofence.status.value for geofence in result.scalars().all()}
