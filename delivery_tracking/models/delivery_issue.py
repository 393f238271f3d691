"""Modele Anomalies livraison / Delivery issue model."""

import enum

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from delivery_tracking.database import Base


class IssueType(str, enum.Enum):
    """Type d'anomalie / Issue type."""
    EXCESSIVE_SPEED = "excessive_speed"
    PROLONGED_STOP = "prolonged_stop"
    POOR_GPS_ACCURACY = "poor_gps_accuracy"
    LOW_BATTERY = "low_battery"
    SIGNAL_LOST = "signal_lost"


class IssueSeverity(str, enum.Enum):
    """Severite de l'anomalie / Issue severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeliveryIssue(Base):
    """Anomalies detectees sur une livraison / Issues detected on a delivery."""
    __tablename__ = "delivery_issues"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id"), nullable=False)
    sample_id: Mapped[int | None] = mapped_column(ForeignKey("location_samples.id"))
    issue_type: Mapped[IssueType] = mapped_column(Enum(IssueType), nullable=False)
    severity: Mapped[IssueSeverity] = mapped_column(Enum(IssueSeverity), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str] = mapped_column(String(32), nullable=False)  # ISO 8601
    acknowledged_at: Mapped[str | None] = mapped_column(String(32))
    notified: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("ix_delivery_issues_delivery", "delivery_id"),
    )
