"""Modele Journal des transitions / Status transition log model."""

import enum

from sqlalchemy import Boolean, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base
from delivery_tracking.models.delivery import DeliveryStatus


class TransitionSource(str, enum.Enum):
    """Declencheur / Trigger."""
    GEOFENCE = "geofence"
    MANUAL = "manual"
    SYSTEM = "system"


class StatusTransition(Base):
    """Transitions acceptees et rejetees (incoherences) / Accepted and rejected transitions (inconsistencies)."""
    __tablename__ = "status_transitions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    from_status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), nullable=False)
    to_status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), nullable=False)
    source: Mapped[TransitionSource] = mapped_column(Enum(TransitionSource), nullable=False)
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(String(32), nullable=False)
