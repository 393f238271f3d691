"""Modèle Livraison / Delivery model."""

import enum

from sqlalchemy import Enum, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base


class DeliveryStatus(str, enum.Enum):
    """Statut de la livraison / Delivery status."""
    REQUESTED = "requested"
    ASSIGNED = "assigned"
    PICKUP_PENDING = "pickup_pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELAYED = "delayed"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuts suivis par le rafraichissement ETA / Statuses covered by the ETA refresh
ACTIVE_STATUSES = (
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.PICKUP_PENDING,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELAYED,
)

# Statuts finaux, plus aucune transition / Final statuses, no further transition
TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})


class TransportMode(str, enum.Enum):
    """Mode de transport / Transport mode."""
    TRUCK = "truck"
    VAN = "van"
    PICKUP = "pickup"
    MOTORBIKE = "motorbike"
    BICYCLE = "bicycle"


class Delivery(Base):
    """Livraison (propriete du module commandes) / Delivery (owned by the order subsystem).

    Le suivi ne modifie que status / updated_at.
    """
    __tablename__ = "deliveries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_reference: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), default=DeliveryStatus.REQUESTED)
    transport_mode: Mapped[TransportMode] = mapped_column(Enum(TransportMode), nullable=False)

    # Adresse d'enlevement / Pickup address
    pickup_address: Mapped[str | None] = mapped_column(String(255))
    pickup_label: Mapped[str | None] = mapped_column(String(100))  # ville / city
    pickup_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_longitude: Mapped[float] = mapped_column(Float, nullable=False)

    # Adresse de livraison / Delivery address
    delivery_address: Mapped[str | None] = mapped_column(String(255))
    delivery_label: Mapped[str | None] = mapped_column(String(100))
    delivery_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    delivery_longitude: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO 8601
    updated_at: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO 8601

    __table_args__ = (
        Index("ix_deliveries_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Delivery {self.id} - {self.status.value if self.status else None}>"
