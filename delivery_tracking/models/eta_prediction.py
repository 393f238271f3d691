"""Modele Prediction ETA / ETA prediction model."""

import enum

from sqlalchemy import JSON, Enum, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base


class PredictionKind(str, enum.Enum):
    """Origine de la prediction / Prediction origin."""
    INITIAL = "initial"      # ensemble complet a la creation / full ensemble at creation
    REFRESH = "refresh"      # ensemble complet periodique / periodic full ensemble
    REMAINING = "remaining"  # temps restant sur mise a jour GPS / remaining time on GPS update


class PredictionQuality(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ETAPrediction(Base):
    """Predictions conservees pour audit / Predictions kept for auditing and backtesting."""
    __tablename__ = "eta_predictions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    kind: Mapped[PredictionKind] = mapped_column(Enum(PredictionKind), nullable=False)
    duration_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    arrival_at: Mapped[str] = mapped_column(String(32), nullable=False)
    distance_km: Mapped[float | None] = mapped_column(Float)
    average_speed_kmh: Mapped[float | None] = mapped_column(Float)

    # Intervalle de confiance / Confidence interval
    ci_mean: Mapped[float] = mapped_column(Float, nullable=False)
    ci_std_dev: Mapped[float] = mapped_column(Float, nullable=False)
    ci90_lower: Mapped[float] = mapped_column(Float, nullable=False)
    ci90_upper: Mapped[float] = mapped_column(Float, nullable=False)
    ci95_lower: Mapped[float] = mapped_column(Float, nullable=False)
    ci95_upper: Mapped[float] = mapped_column(Float, nullable=False)

    quality: Mapped[PredictionQuality] = mapped_column(Enum(PredictionQuality), nullable=False)
    model_breakdown: Mapped[dict | None] = mapped_column(JSON)
    factors: Mapped[dict | None] = mapped_column(JSON)
    delay_probability: Mapped[float | None] = mapped_column(Float)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        Index("ix_eta_predictions_delivery_created", "delivery_id", "created_at"),
    )
