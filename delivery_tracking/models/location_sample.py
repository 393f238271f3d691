"""Modele Position GPS enrichie / Enriched GPS location sample model."""

from sqlalchemy import Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base


class LocationSample(Base):
    """Position GPS, ajout seul / GPS sample, append-only.

    Les champs derives sont nuls pour la premiere position d'une livraison.
    Derived fields are null for the first sample of a delivery.
    """
    __tablename__ = "location_samples"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    altitude: Mapped[float | None] = mapped_column(Float)
    accuracy: Mapped[float | None] = mapped_column(Float)  # metres
    reported_speed: Mapped[float | None] = mapped_column(Float)  # km/h
    battery_level: Mapped[float | None] = mapped_column(Float)  # %
    signal_strength: Mapped[float | None] = mapped_column(Float)
    timestamp: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO 8601, horloge client / client clock
    received_at: Mapped[str] = mapped_column(String(32), nullable=False)

    # Champs derives / Derived fields
    computed_speed: Mapped[float | None] = mapped_column(Float)  # km/h
    bearing: Mapped[float | None] = mapped_column(Float)  # degres / degrees
    acceleration: Mapped[float | None] = mapped_column(Float)  # km/h²
    distance_since_last: Mapped[float | None] = mapped_column(Float)  # metres

    __table_args__ = (
        Index("ix_location_samples_delivery_timestamp", "delivery_id", "timestamp"),
    )

    @property
    def effective_speed(self) -> float | None:
        """Vitesse rapportee sinon calculee / Reported speed, else computed."""
        if self.reported_speed is not None:
            return self.reported_speed
        return self.computed_speed
