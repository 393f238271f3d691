"""
Machine a etats de la livraison / Delivery state machine.
Graphe de transitions ferme, les transitions refusees sont journalisees comme incoherences.
Closed transition graph, rejected transitions are logged as inconsistencies.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.exceptions import IllegalTransitionError
from delivery_tracking.models.delivery import TERMINAL_STATUSES, Delivery, DeliveryStatus
from delivery_tracking.models.status_transition import StatusTransition, TransitionSource
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.services.geofence_registry import GeofenceRegistry
from delivery_tracking.utils.timeutils import now_iso

logger = logging.getLogger(__name__)

S = DeliveryStatus

ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    S.REQUESTED: frozenset({S.ASSIGNED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.PICKUP_PENDING, S.CANCELLED}),
    S.PICKUP_PENDING: frozenset({S.PICKED_UP, S.DELAYED, S.CANCELLED}),
    S.PICKED_UP: frozenset({S.IN_TRANSIT, S.DELAYED, S.CANCELLED}),
    S.IN_TRANSIT: frozenset({S.DELIVERED, S.DELAYED, S.FAILED, S.CANCELLED}),
    S.DELAYED: frozenset({S.IN_TRANSIT, S.DELIVERED, S.FAILED, S.CANCELLED}),
    S.FAILED: frozenset({S.PICKUP_PENDING, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(from_status: DeliveryStatus, to_status: DeliveryStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def allowed_targets(status: DeliveryStatus) -> frozenset[DeliveryStatus]:
    return ALLOWED_TRANSITIONS.get(status, frozenset())


def is_terminal(status: DeliveryStatus) -> bool:
    return status in TERMINAL_STATUSES


class DeliveryStateMachine:
    """Applique les transitions sur une livraison / Applies transitions to a delivery."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def transition(
        self,
        delivery: Delivery,
        to_status: DeliveryStatus,
        source: TransitionSource = TransitionSource.MANUAL,
        reason: str | None = None,
    ) -> StatusTransition:
        """Appliquer une transition ou lever IllegalTransitionError /
        Apply a transition or raise IllegalTransitionError.

        Une transition refusee est tout de meme enregistree (accepted=False),
        le statut courant reste inchange.
        """
        from_status = delivery.status
        timestamp = now_iso()

        if not can_transition(from_status, to_status):
            await self.reject(delivery, to_status, source, reason)
            raise IllegalTransitionError(from_status, to_status, details={"delivery_id": delivery.id})

        delivery.status = to_status
        delivery.updated_at = timestamp
        record = StatusTransition(
            delivery_id=delivery.id,
            from_status=from_status,
            to_status=to_status,
            source=source,
            accepted=True,
            reason=reason,
            created_at=timestamp,
        )
        self.db.add(record)
        await self._on_enter(delivery, to_status, timestamp)
        await self.db.flush()
        logger.info("delivery %s: %s -> %s (%s)", delivery.id, from_status.value, to_status.value, source.value)
        return record

    async def reject(
        self,
        delivery: Delivery,
        to_status: DeliveryStatus,
        source: TransitionSource,
        reason: str | None = None,
    ) -> StatusTransition:
        """Enregistrer une transition refusee, statut inchange / Record a rejected transition, status unchanged."""
        logger.warning(
            "[inconsistency] delivery %s: %s -> %s rejected (source=%s)",
            delivery.id, delivery.status.value, to_status.value, source.value,
        )
        record = StatusTransition(
            delivery_id=delivery.id,
            from_status=delivery.status,
            to_status=to_status,
            source=source,
            accepted=False,
            reason=reason,
            created_at=now_iso(),
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def _on_enter(self, delivery: Delivery, status: DeliveryStatus, timestamp: str) -> None:
        if status == S.PICKED_UP:
            # Debut du trajet mesure / Start of the measured journey
            state = await self.db.get(TrackingState, delivery.id)
            if state is not None:
                state.picked_up_at = timestamp
        if is_terminal(status):
            await GeofenceRegistry(self.db).deactivate(delivery.id)
