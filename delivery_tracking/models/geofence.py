"""Modeles Geofence / Geofence models."""

import enum

from sqlalchemy import Boolean, Enum, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base
from delivery_tracking.utils.geo import GeoCircle, GeoPoint


class GeofenceKind(str, enum.Enum):
    """Zone d'enlevement ou de livraison / Pickup or delivery zone."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class GeofenceStatus(str, enum.Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"


class GeofenceEventType(str, enum.Enum):
    ENTER = "enter"
    EXIT = "exit"


class Geofence(Base):
    """Zone circulaire nommee / Named circular zone."""
    __tablename__ = "geofences"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    kind: Mapped[GeofenceKind] = mapped_column(Enum(GeofenceKind), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    center_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    center_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_meters: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[GeofenceStatus] = mapped_column(Enum(GeofenceStatus), default=GeofenceStatus.OUTSIDE)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_event_at: Mapped[str | None] = mapped_column(String(32))

    __table_args__ = (
        Index("ix_geofences_delivery_active", "delivery_id", "is_active"),
    )

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(self.center_latitude, self.center_longitude)

    @property
    def circle(self) -> GeoCircle:
        return GeoCircle(self.center, self.radius_meters)


class GeofenceEvent(Base):
    """Entree / sortie de zone / Zone enter / exit."""
    __tablename__ = "geofence_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    geofence_id: Mapped[int] = mapped_column(ForeignKey("geofences.id"), nullable=False)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    sample_id: Mapped[int | None] = mapped_column(ForeignKey("location_samples.id"))
    event_type: Mapped[GeofenceEventType] = mapped_column(Enum(GeofenceEventType), nullable=False)
    timestamp: Mapped[str] = mapped_column(String(32), nullable=False)
