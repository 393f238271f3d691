"""
Modèles SQLAlchemy / SQLAlchemy models.
Importer tous les modèles ici pour que create_all les détecte.
Import all models here so create_all can detect them.
"""

from delivery_tracking.models.delivery import ACTIVE_STATUSES, Delivery, DeliveryStatus, TransportMode
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.models.geofence import Geofence, GeofenceEvent, GeofenceEventType, GeofenceKind, GeofenceStatus
from delivery_tracking.models.eta_prediction import ETAPrediction, PredictionKind, PredictionQuality
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueSeverity, IssueType
from delivery_tracking.models.status_transition import StatusTransition, TransitionSource
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.models.completed_route import CompletedRoute

__all__ = [
    "ACTIVE_STATUSES",
    "Delivery",
    "DeliveryStatus",
    "TransportMode",
    "LocationSample",
    "Geofence",
    "GeofenceEvent",
    "GeofenceEventType",
    "GeofenceKind",
    "GeofenceStatus",
    "ETAPrediction",
    "PredictionKind",
    "PredictionQuality",
    "DeliveryIssue",
    "IssueSeverity",
    "IssueType",
    "StatusTransition",
    "TransitionSource",
    "TrackingState",
    "CompletedRoute",
]
