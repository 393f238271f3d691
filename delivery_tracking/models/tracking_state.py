"""Modele Etat de suivi par livraison / Per-delivery tracking state model."""

from sqlalchemy import JSON, Boolean, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base


class TrackingState(Base):
    """Etat mutable du suivi, une ligne par livraison / Mutable tracking state, one row per delivery.

    Porte aussi l'etat du filtre de vitesse (jamais partage entre livraisons).
    Also carries the velocity filter state (never shared between deliveries).
    """
    __tablename__ = "tracking_states"

    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), primary_key=True)

    # Detection d'arret prolonge / Prolonged stop detection
    stationary_since: Mapped[str | None] = mapped_column(String(32))
    prolonged_stop_reported: Mapped[bool] = mapped_column(Boolean, default=False)
    signal_lost_reported: Mapped[bool] = mapped_column(Boolean, default=False)

    arrival_detected_at: Mapped[str | None] = mapped_column(String(32))
    picked_up_at: Mapped[str | None] = mapped_column(String(32))

    # Filtre de Kalman / Kalman filter state
    filter_position_km: Mapped[float | None] = mapped_column(Float)
    filter_velocity_kmh: Mapped[float | None] = mapped_column(Float)
    filter_acceleration: Mapped[float | None] = mapped_column(Float)
    filter_covariance: Mapped[list | None] = mapped_column(JSON)
    filter_updated_at: Mapped[str | None] = mapped_column(String(32))

    last_full_prediction_at: Mapped[str | None] = mapped_column(String(32))
