"""Schemas Livraison / Delivery schemas."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from delivery_tracking.models.delivery import TERMINAL_STATUSES, DeliveryStatus, TransportMode
from delivery_tracking.models.status_transition import TransitionSource
from delivery_tracking.schemas.tracking import ETARead


class DeliveryCreate(BaseModel):
    """Livraison transmise par le module commandes / Delivery handed over by the order subsystem."""
    order_reference: str | None = Field(default=None, max_length=50)
    status: DeliveryStatus = DeliveryStatus.ASSIGNED
    transport_mode: TransportMode
    pickup_address: str | None = Field(default=None, max_length=255)
    pickup_label: str | None = Field(default=None, max_length=100)
    pickup_latitude: float = Field(ge=-90, le=90)
    pickup_longitude: float = Field(ge=-180, le=180)
    delivery_address: str | None = Field(default=None, max_length=255)
    delivery_label: str | None = Field(default=None, max_length=100)
    delivery_latitude: float = Field(ge=-90, le=90)
    delivery_longitude: float = Field(ge=-180, le=180)

    @field_validator("status")
    @classmethod
    def open_status(cls, value: DeliveryStatus) -> DeliveryStatus:
        """Une livraison ne peut pas naitre terminee / A delivery cannot start in a final status."""
        if value in TERMINAL_STATUSES:
            raise ValueError(f"initial status cannot be {value.value}")
        return value


class DeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_reference: str | None = None
    status: DeliveryStatus
    transport_mode: TransportMode
    pickup_address: str | None = None
    pickup_label: str | None = None
    pickup_latitude: float
    pickup_longitude: float
    delivery_address: str | None = None
    delivery_label: str | None = None
    delivery_latitude: float
    delivery_longitude: float
    created_at: str
    updated_at: str


class DeliveryCreated(DeliveryRead):
    """Livraison creee avec son ETA initiale / Created delivery with its initial ETA."""
    eta: ETARead | None = None


class StatusChange(BaseModel):
    """Changement de statut operateur / chauffeur / Operator or courier status change."""
    status: DeliveryStatus
    reason: str | None = Field(default=None, max_length=500)


class StatusTransitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    delivery_id: int
    from_status: DeliveryStatus
    to_status: DeliveryStatus
    source: TransitionSource
    accepted: bool
    reason: str | None = None
    created_at: str


class DeliveryReport(BaseModel):
    """Analytique finale d'une livraison / Final delivery analytics."""
    delivery_id: int
    status: DeliveryStatus
    picked_up_at: str | None = None
    delivered_at: str
    actual_duration_minutes: float
    predicted_duration_minutes: float | None = None
    eta_accuracy: float | None = None
    on_time: bool | None = None
    total_distance_km: float
    average_speed_kmh: float | None = None
    issues_count: int
    samples_count: int
