"""
Notifications sortantes / Outbound notifications.
Les echecs d'envoi sont journalises et ne reviennent jamais sur l'etat de suivi.
Dispatch failures are logged and never roll back tracking state.
"""

import logging
from collections.abc import Awaitable, Callable

from delivery_tracking.models.delivery import DeliveryStatus
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueSeverity
from delivery_tracking.models.eta_prediction import ETAPrediction
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.services.geofence_registry import GeofenceCrossing
from delivery_tracking.utils.timeutils import now_iso

logger = logging.getLogger(__name__)

Broadcast = Callable[[dict], Awaitable[None]]


class NotificationDispatcher:
    """Diffuse les evenements de suivi / Publishes tracking events.

    `broadcast` est le collaborateur externe (WebSocket, file, webhook).
    `broadcast` is the external collaborator (WebSocket, queue, webhook).
    """

    def __init__(self, broadcast: Broadcast | None = None):
        self._broadcast = broadcast

    async def send(self, message: dict) -> bool:
        if self._broadcast is None:
            return False
        try:
            await self._broadcast(message)
        except Exception:
            logger.exception("notification %s failed", message.get("type"))
            return False
        return True

    async def alert(self, issue: DeliveryIssue) -> bool:
        """Alerte anomalie / Issue alert."""
        sent = await self.send({
            "type": "alert",
            "delivery_id": issue.delivery_id,
            "issue_type": issue.issue_type.value,
            "severity": issue.severity.value,
            "description": issue.description,
            "timestamp": issue.created_at,
        })
        if sent:
            issue.notified = True
        return sent

    async def alerts(self, issues: list[DeliveryIssue]) -> int:
        """Envoyer les anomalies de severite haute / Dispatch high-severity issues."""
        sent = 0
        for issue in issues:
            if issue.severity == IssueSeverity.HIGH and await self.alert(issue):
                sent += 1
        return sent

    async def location_update(self, sample: LocationSample, status: DeliveryStatus) -> bool:
        return await self.send({
            "type": "location_update",
            "delivery_id": sample.delivery_id,
            "status": status.value,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "speed": sample.effective_speed,
            "bearing": sample.bearing,
            "timestamp": sample.timestamp,
        })

    async def geofence_event(self, delivery_id: int, crossing: GeofenceCrossing) -> bool:
        return await self.send({
            "type": f"geofence_{crossing.event_type.value}",
            "delivery_id": delivery_id,
            "geofence": crossing.geofence.name,
            "kind": crossing.kind.value,
            "timestamp": crossing.event.timestamp,
        })

    async def arrival(self, delivery_id: int, timestamp: str) -> bool:
        """Arrivee detectee en zone de livraison / Arrival detected in the delivery zone."""
        return await self.send({
            "type": "arrival",
            "delivery_id": delivery_id,
            "timestamp": timestamp,
        })

    async def status_change(
        self,
        delivery_id: int,
        from_status: DeliveryStatus,
        to_status: DeliveryStatus,
        source: str,
    ) -> bool:
        return await self.send({
            "type": "status_change",
            "delivery_id": delivery_id,
            "from_status": from_status.value,
            "to_status": to_status.value,
            "source": source,
            "timestamp": now_iso(),
        })

    async def eta_update(self, prediction: ETAPrediction) -> bool:
        return await self.send({
            "type": "eta_update",
            "delivery_id": prediction.delivery_id,
            "kind": prediction.kind.value,
            "duration_minutes": round(prediction.duration_minutes, 1),
            "arrival_at": prediction.arrival_at,
            "quality": prediction.quality.value,
            "delay_probability": prediction.delay_probability,
            "timestamp": prediction.created_at,
        })
