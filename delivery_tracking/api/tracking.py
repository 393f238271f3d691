"""Routes suivi temps reel / Real-time tracking routes."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.api.deps import get_query_service, get_tracking_service, http_error
from delivery_tracking.config import settings
from delivery_tracking.database import get_db
from delivery_tracking.exceptions import TrackingError
from delivery_tracking.models.delivery import TransportMode
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueSeverity
from delivery_tracking.rate_limit import limiter
from delivery_tracking.schemas.tracking import (
    ETARead,
    IssueRead,
    LocationSampleRead,
    LocationUpdateCreate,
    LocationUpdateResult,
    PerformanceMetrics,
    TrackingHistory,
    TrackingView,
)
from delivery_tracking.services.eta.service import latest_prediction, prediction_to_dict
from delivery_tracking.services.tracking_query import TrackingQueryService
from delivery_tracking.services.tracking_service import TrackingService
from delivery_tracking.utils.timeutils import now_iso

router = APIRouter()


# ─── Routes sans livraison / Delivery-independent routes ───

@router.get("/alerts", response_model=list[IssueRead])
async def list_alerts(
    delivery_id: int | None = None,
    severity: IssueSeverity | None = None,
    query: TrackingQueryService = Depends(get_query_service),
):
    """Anomalies non acquittees / Unacknowledged issues."""
    return await query.active_alerts(delivery_id, severity)


@router.put("/alerts/{alert_id}/acknowledge", response_model=IssueRead)
async def acknowledge_alert(alert_id: int, db: AsyncSession = Depends(get_db)):
    """Acquitter une alerte / Acknowledge an alert."""
    issue = await db.get(DeliveryIssue, alert_id)
    if not issue:
        raise HTTPException(status_code=404, detail="Alert not found")
    if issue.acknowledged_at is None:
        issue.acknowledged_at = now_iso()
        await db.flush()
    return issue


@router.get("/performance", response_model=PerformanceMetrics)
async def performance_metrics(
    transport_mode: TransportMode | None = None,
    days: int | None = Query(default=None, ge=1),
    query: TrackingQueryService = Depends(get_query_service),
):
    """Indicateurs sur les trajets termines / Metrics over completed routes."""
    return await query.get_performance_metrics(transport_mode, days)


# ─── Suivi d'une livraison / Per-delivery tracking ───

@router.post("/{delivery_id}/location", response_model=LocationUpdateResult)
@limiter.limit(settings.RATE_LIMIT_LOCATION)
async def submit_location(
    request: Request,
    delivery_id: int,
    data: LocationUpdateCreate,
    service: TrackingService = Depends(get_tracking_service),
):
    """Position GPS du chauffeur / Courier GPS location report."""
    try:
        outcome = await service.process_location_update(delivery_id, data)
    except TrackingError as exc:
        raise http_error(exc) from exc

    return LocationUpdateResult(
        delivery_id=delivery_id,
        stored=outcome.stored,
        reason=outcome.reason,
        sample=LocationSampleRead.model_validate(outcome.sample) if outcome.sample is not None else None,
        status=outcome.delivery.status,
        geofence_events=[crossing.as_dict() for crossing in outcome.crossings],
        issues=[IssueRead.model_validate(issue) for issue in outcome.issues],
        eta=prediction_to_dict(outcome.prediction) if outcome.prediction is not None else None,
    )


@router.get("/{delivery_id}", response_model=TrackingView)
async def get_tracking(delivery_id: int, query: TrackingQueryService = Depends(get_query_service)):
    """Vue de suivi temps reel / Real-time tracking view."""
    try:
        return await query.get_tracking_view(delivery_id)
    except TrackingError as exc:
        raise http_error(exc) from exc


@router.get("/{delivery_id}/history", response_model=TrackingHistory)
async def get_history(
    delivery_id: int,
    hours: int = Query(default=settings.HISTORY_WINDOW_HOURS, ge=1, le=24 * 30),
    query: TrackingQueryService = Depends(get_query_service),
):
    """Positions des N dernieres heures / Samples from the last N hours."""
    try:
        return await query.get_history(delivery_id, hours)
    except TrackingError as exc:
        raise http_error(exc) from exc


@router.get("/{delivery_id}/eta", response_model=ETARead)
async def get_eta(delivery_id: int, service: TrackingService = Depends(get_tracking_service)):
    """Derniere prediction ETA / Latest ETA prediction."""
    try:
        await service.get_delivery(delivery_id)
    except TrackingError as exc:
        raise http_error(exc) from exc
    prediction = await latest_prediction(service.db, delivery_id)
    if prediction is None:
        raise HTTPException(status_code=404, detail="No ETA prediction for this delivery")
    return prediction_to_dict(prediction)


@router.post("/{delivery_id}/eta/refresh", response_model=ETARead)
async def refresh_eta(delivery_id: int, service: TrackingService = Depends(get_tracking_service)):
    """Forcer un ensemble complet / Force a full ensemble prediction."""
    try:
        prediction = await service.refresh_eta(delivery_id)
    except TrackingError as exc:
        raise http_error(exc) from exc
    if prediction is None:
        raise HTTPException(status_code=409, detail="Delivery is closed")
    return prediction_to_dict(prediction)
