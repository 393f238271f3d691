"""Modele Trajet termine (historique) / Completed route model (history)."""

from sqlalchemy import Boolean, Enum, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base
from delivery_tracking.models.delivery import TransportMode


class CompletedRoute(Base):
    """Trajet livre, source de la regression et des indicateurs /
    Delivered route, source for the regression model and performance metrics."""
    __tablename__ = "completed_routes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int | None] = mapped_column(ForeignKey("deliveries.id"))
    transport_mode: Mapped[TransportMode] = mapped_column(Enum(TransportMode), nullable=False)

    origin_label: Mapped[str | None] = mapped_column(String(100))
    origin_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    origin_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    destination_label: Mapped[str | None] = mapped_column(String(100))
    destination_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    destination_longitude: Mapped[float] = mapped_column(Float, nullable=False)

    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    predicted_duration_minutes: Mapped[float | None] = mapped_column(Float)
    actual_duration_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    average_speed_kmh: Mapped[float | None] = mapped_column(Float)

    # Contexte au depart / Context at departure
    time_factor: Mapped[float] = mapped_column(Float, default=1.0)
    weather_factor: Mapped[float] = mapped_column(Float, default=1.0)
    traffic_density: Mapped[float] = mapped_column(Float, default=0.5)
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = dimanche / Sunday

    # Analytique finale / Final analytics
    eta_accuracy: Mapped[float | None] = mapped_column(Float)
    on_time: Mapped[bool | None] = mapped_column(Boolean)
    issues_count: Mapped[int] = mapped_column(Integer, default=0)
    total_distance_km: Mapped[float | None] = mapped_column(Float)
    completed_at: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        Index("ix_completed_routes_mode_completed", "transport_mode", "completed_at"),
    )
