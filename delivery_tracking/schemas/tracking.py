"""Schemas suivi / Tracking schemas: GPS ingestion, tracking view, ETA, alerts."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from delivery_tracking.models.delivery import DeliveryStatus
from delivery_tracking.models.delivery_issue import IssueSeverity, IssueType
from delivery_tracking.models.eta_prediction import PredictionKind, PredictionQuality
from delivery_tracking.utils.timeutils import to_utc


# ─── GPS ───

class LocationUpdateCreate(BaseModel):
    """Position envoyee par l'application mobile / Location report from the mobile client."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    altitude: float | None = None
    accuracy: float | None = Field(default=None, ge=0)
    speed: float | None = Field(default=None, ge=0)  # km/h
    battery_level: float | None = Field(default=None, ge=0, le=100)
    signal_strength: float | None = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalise_timestamp(cls, value: datetime) -> datetime:
        # Stocke a la seconde en UTC / Stored in UTC at second resolution
        return to_utc(value).replace(microsecond=0)


class LocationSampleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    delivery_id: int
    latitude: float
    longitude: float
    altitude: float | None = None
    accuracy: float | None = None
    reported_speed: float | None = None
    battery_level: float | None = None
    signal_strength: float | None = None
    timestamp: str
    received_at: str
    computed_speed: float | None = None
    bearing: float | None = None
    acceleration: float | None = None
    distance_since_last: float | None = None


# ─── Alertes / Alerts ───

class IssueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    delivery_id: int
    sample_id: int | None = None
    issue_type: IssueType
    severity: IssueSeverity
    description: str | None = None
    created_at: str
    acknowledged_at: str | None = None
    notified: bool


# ─── ETA ───

class ConfidenceBounds(BaseModel):
    lower: float
    upper: float


class ConfidenceInterval(BaseModel):
    mean: float
    std_dev: float
    confidence_90: ConfidenceBounds
    confidence_95: ConfidenceBounds


class ETARead(BaseModel):
    id: int
    delivery_id: int
    kind: PredictionKind
    duration_minutes: float
    arrival_at: str
    distance_km: float | None = None
    average_speed_kmh: float | None = None
    confidence_interval: ConfidenceInterval
    quality: PredictionQuality
    model_breakdown: dict | None = None
    factors: dict | None = None
    delay_probability: float | None = None
    error: str | None = None
    created_at: str


class LocationUpdateResult(BaseModel):
    """Resultat d'une mise a jour GPS / Outcome of a location update."""
    delivery_id: int
    stored: bool
    reason: str | None = None
    sample: LocationSampleRead | None = None
    status: DeliveryStatus
    geofence_events: list[dict] = []
    issues: list[IssueRead] = []
    eta: ETARead | None = None


# ─── Vue de suivi / Tracking view ───

class CurrentLocation(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: str


class JourneyStatistics(BaseModel):
    total_distance_km: float = 0.0
    average_speed_kmh: float = 0.0
    stops_count: int = 0
    duration_minutes: float = 0.0


class RealTimeMetrics(BaseModel):
    progress_percentage: float | None = None
    remaining_distance_km: float | None = None
    eta_updated_at: str | None = None


class TrackingView(BaseModel):
    delivery_id: int
    current_status: DeliveryStatus
    current_location: CurrentLocation | None = None
    current_speed: float | None = None
    bearing: float | None = None
    journey_statistics: JourneyStatistics
    geofence_status: dict[str, str]
    latest_eta: ETARead | None = None
    active_alerts: list[IssueRead] = []
    tracking_quality: str
    real_time_metrics: RealTimeMetrics
    last_updated: str | None = None


class TrackingHistory(BaseModel):
    delivery_id: int
    hours: int
    samples: list[LocationSampleRead]
    journey_statistics: JourneyStatistics


class PerformanceMetrics(BaseModel):
    """Indicateurs sur les trajets termines / Metrics over completed routes."""
    total_deliveries: int
    average_duration_minutes: float | None = None
    average_eta_accuracy: float | None = None
    on_time_percentage: float | None = None
    issue_rate: float | None = None
    average_distance_km: float | None = None
