"""
Service de lecture du suivi / Tracking query service.
Vue temps reel, historique, alertes, indicateurs de performance.
Real-time view, history, alerts, performance metrics.
"""

from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.exceptions import DeliveryNotFoundError
from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import Delivery, TransportMode
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueSeverity
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.services.eta.service import (
    destination_of,
    latest_prediction,
    pickup_of,
    prediction_to_dict,
)
from delivery_tracking.services.geofence_registry import GeofenceRegistry
from delivery_tracking.utils.geo import GeoPoint, road_distance_km
from delivery_tracking.utils.timeutils import now_utc, parse_iso, to_iso

# Seuils de qualite du suivi / Tracking quality thresholds
GOOD_ACCURACY_METERS = 20.0
FAIR_ACCURACY_METERS = 50.0


def journey_statistics(samples: list[LocationSample], stationary_speed_kmh: float | None = None) -> dict:
    """Distance, vitesse moyenne, arrets, duree / Distance, average speed, stops, duration."""
    if not samples:
        return {"total_distance_km": 0.0, "average_speed_kmh": 0.0, "stops_count": 0, "duration_minutes": 0.0}

    threshold = stationary_speed_kmh if stationary_speed_kmh is not None else settings.STATIONARY_SPEED_KMH
    total_m = sum(s.distance_since_last or 0.0 for s in samples)
    duration_min = (parse_iso(samples[-1].timestamp) - parse_iso(samples[0].timestamp)).total_seconds() / 60.0

    # Un arret = une suite de positions sous le seuil / A stop = a run of samples below the threshold
    stops = 0
    stopped = False
    for sample in samples:
        speed = sample.effective_speed
        if speed is None:
            continue
        if speed < threshold:
            if not stopped:
                stops += 1
            stopped = True
        else:
            stopped = False

    total_km = total_m / 1000.0
    return {
        "total_distance_km": round(total_km, 3),
        "average_speed_kmh": round(total_km / (duration_min / 60.0), 2) if duration_min > 0 else 0.0,
        "stops_count": stops,
        "duration_minutes": round(duration_min, 1),
    }


def tracking_quality(samples: list[LocationSample], max_gap_seconds: float | None = None) -> str:
    """good / fair / poor / unknown selon precision moyenne et trou maximal /
    from mean accuracy and maximum update gap."""
    if not samples:
        return "unknown"
    max_gap_allowed = max_gap_seconds if max_gap_seconds is not None else settings.MAX_SILENCE_SECONDS

    accuracies = [s.accuracy for s in samples if s.accuracy is not None]
    mean_accuracy = sum(accuracies) / len(accuracies) if accuracies else None
    times = [parse_iso(s.timestamp) for s in samples]
    max_gap = max(((b - a).total_seconds() for a, b in zip(times, times[1:])), default=0.0)

    accuracy_good = mean_accuracy is None or mean_accuracy <= GOOD_ACCURACY_METERS
    accuracy_fair = mean_accuracy is None or mean_accuracy <= FAIR_ACCURACY_METERS
    if accuracy_good and max_gap <= max_gap_allowed:
        return "good"
    if accuracy_fair and max_gap <= 2 * max_gap_allowed:
        return "fair"
    return "poor"


class TrackingQueryService:
    """Lectures du suivi / Tracking reads."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.db.get(Delivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found", details={"delivery_id": delivery_id})
        return delivery

    async def _samples(self, delivery_id: int, since: str | None = None) -> list[LocationSample]:
        query = select(LocationSample).where(LocationSample.delivery_id == delivery_id)
        if since is not None:
            query = query.where(LocationSample.timestamp >= since)
        result = await self.db.execute(query.order_by(LocationSample.timestamp, LocationSample.id))
        return list(result.scalars().all())

    async def active_alerts(self, delivery_id: int | None = None, severity: IssueSeverity | None = None) -> list[DeliveryIssue]:
        """Anomalies non acquittees / Unacknowledged issues."""
        query = select(DeliveryIssue).where(DeliveryIssue.acknowledged_at.is_(None))
        if delivery_id is not None:
            query = query.where(DeliveryIssue.delivery_id == delivery_id)
        if severity is not None:
            query = query.where(DeliveryIssue.severity == severity)
        result = await self.db.execute(query.order_by(DeliveryIssue.created_at.desc(), DeliveryIssue.id.desc()))
        return list(result.scalars().all())

    async def get_tracking_view(self, delivery_id: int) -> dict:
        delivery = await self._delivery(delivery_id)
        samples = await self._samples(delivery_id)
        last = samples[-1] if samples else None
        latest = await latest_prediction(self.db, delivery_id)

        current_location = None
        remaining_km = None
        progress = None
        if last is not None:
            current_location = {
                "latitude": last.latitude,
                "longitude": last.longitude,
                "accuracy": last.accuracy,
                "timestamp": last.timestamp,
            }
            destination = destination_of(delivery)
            remaining_km = road_distance_km(GeoPoint(last.latitude, last.longitude), destination)
            total_km = road_distance_km(pickup_of(delivery), destination)
            if total_km > 0:
                progress = round(max(0.0, min(100.0, (1 - remaining_km / total_km) * 100)), 1)

        return {
            "delivery_id": delivery.id,
            "current_status": delivery.status,
            "current_location": current_location,
            "current_speed": last.effective_speed if last is not None else None,
            "bearing": last.bearing if last is not None else None,
            "journey_statistics": journey_statistics(samples),
            "geofence_status": await GeofenceRegistry(self.db).status_for(delivery_id),
            "latest_eta": prediction_to_dict(latest) if latest is not None else None,
            "active_alerts": await self.active_alerts(delivery_id),
            "tracking_quality": tracking_quality(samples),
            "real_time_metrics": {
                "progress_percentage": progress,
                "remaining_distance_km": remaining_km,
                "eta_updated_at": latest.created_at if latest is not None else None,
            },
            "last_updated": last.received_at if last is not None else delivery.updated_at,
        }

    async def get_history(self, delivery_id: int, hours: int = 24) -> dict:
        """Positions des N dernieres heures / Samples from the last N hours."""
        await self._delivery(delivery_id)
        since = to_iso(now_utc() - timedelta(hours=hours))
        samples = await self._samples(delivery_id, since=since)
        return {
            "delivery_id": delivery_id,
            "hours": hours,
            "samples": samples,
            "journey_statistics": journey_statistics(samples),
        }

    async def get_performance_metrics(
        self,
        transport_mode: TransportMode | None = None,
        days: int | None = None,
    ) -> dict:
        """Indicateurs sur les trajets termines / Metrics over completed routes."""
        query = select(CompletedRoute)
        if transport_mode is not None:
            query = query.where(CompletedRoute.transport_mode == transport_mode)
        if days is not None:
            query = query.where(CompletedRoute.completed_at >= to_iso(now_utc() - timedelta(days=days)))
        routes = list((await self.db.execute(query)).scalars().all())

        total = len(routes)
        if total == 0:
            return {"total_deliveries": 0}

        def _avg(values: list[float]) -> float | None:
            return round(sum(values) / len(values), 2) if values else None

        accuracies = [r.eta_accuracy for r in routes if r.eta_accuracy is not None]
        judged = [r.on_time for r in routes if r.on_time is not None]
        return {
            "total_deliveries": total,
            "average_duration_minutes": _avg([r.actual_duration_minutes for r in routes]),
            "average_eta_accuracy": round(sum(accuracies) / len(accuracies), 4) if accuracies else None,
            "on_time_percentage": round(100.0 * sum(1 for t in judged if t) / len(judged), 1) if judged else None,
            "issue_rate": round(100.0 * sum(1 for r in routes if r.issues_count) / total, 1),
            "average_distance_km": _avg([r.distance_km for r in routes]),
        }
