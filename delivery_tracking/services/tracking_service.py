"""
Orchestration du suivi / Tracking orchestration.
position -> geofences + anomalies -> machine a etats -> ETA temps restant -> notifications.
location -> geofences + issues -> state machine -> remaining-time ETA -> notifications.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.exceptions import DeliveryNotFoundError, IllegalTransitionError, StorageUnavailableError
from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import Delivery, DeliveryStatus
from delivery_tracking.models.delivery_issue import DeliveryIssue
from delivery_tracking.models.eta_prediction import ETAPrediction, PredictionKind
from delivery_tracking.models.geofence import GeofenceEventType, GeofenceKind
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.models.status_transition import StatusTransition, TransitionSource
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.schemas.delivery import DeliveryCreate
from delivery_tracking.schemas.tracking import LocationUpdateCreate
from delivery_tracking.services.eta.factors import day_of_week, time_factors, traffic_density
from delivery_tracking.services.eta.filter import FilterState
from delivery_tracking.services.eta.service import ETAPredictionService, destination_of, pickup_of
from delivery_tracking.services.geofence_registry import GeofenceCrossing, GeofenceRegistry
from delivery_tracking.services.issue_detector import IssueDetector
from delivery_tracking.services.location_pipeline import LocationPipeline
from delivery_tracking.services.locks import KeyedLocks, delivery_locks
from delivery_tracking.services.notifications import NotificationDispatcher
from delivery_tracking.services.state_machine import DeliveryStateMachine, is_terminal
from delivery_tracking.utils.geo import GeoPoint, road_distance_km
from delivery_tracking.utils.timeutils import now_iso, now_utc, parse_iso

logger = logging.getLogger(__name__)

ARRIVAL_STATUSES = (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELAYED)


@dataclass
class LocationUpdateOutcome:
    """Resultat complet d'une mise a jour GPS / Full outcome of a location update."""
    delivery: Delivery
    stored: bool
    reason: str | None = None
    sample: LocationSample | None = None
    crossings: list[GeofenceCrossing] = field(default_factory=list)
    transitions: list[StatusTransition] = field(default_factory=list)
    issues: list[DeliveryIssue] = field(default_factory=list)
    arrival_at: str | None = None
    prediction: ETAPrediction | None = None


class TrackingService:
    """Point d'entree des operations de suivi / Entry point for tracking operations."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        locks: KeyedLocks | None = None,
        eta: ETAPredictionService | None = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationDispatcher()
        self.locks = locks if locks is not None else delivery_locks
        self.eta = eta or ETAPredictionService(db)

    async def get_delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.db.get(Delivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found", details={"delivery_id": delivery_id})
        return delivery

    async def get_state(self, delivery_id: int) -> TrackingState:
        state = await self.db.get(TrackingState, delivery_id)
        if state is None:
            state = TrackingState(delivery_id=delivery_id, prolonged_stop_reported=False, signal_lost_reported=False)
            self.db.add(state)
            await self.db.flush()
        return state

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageUnavailableError("Tracking storage unavailable") from exc

    # ─── Creation / Initialisation ───

    async def initialize(self, data: DeliveryCreate) -> tuple[Delivery, ETAPrediction]:
        """Enregistrer une livraison : geofences, etat de suivi, ETA initiale /
        Register a delivery: geofences, tracking state, initial ETA."""
        timestamp = now_iso()
        delivery = Delivery(**data.model_dump(), created_at=timestamp, updated_at=timestamp)
        self.db.add(delivery)
        await self.db.flush()

        self.db.add(TrackingState(delivery_id=delivery.id, prolonged_stop_reported=False, signal_lost_reported=False))
        await GeofenceRegistry(self.db).create_for_delivery(delivery)
        prediction = await self.eta.predict(delivery, kind=PredictionKind.INITIAL)
        await self._commit()

        logger.info(
            "delivery %s registered (%s, %.1f km, ETA %.0f min)",
            delivery.id, delivery.transport_mode.value, prediction.distance_km or 0.0, prediction.duration_minutes,
        )
        return delivery, prediction

    # ─── Mise a jour GPS / Location update ───

    async def process_location_update(
        self,
        delivery_id: int,
        payload: LocationUpdateCreate | dict,
    ) -> LocationUpdateOutcome:
        """Traiter une position sous le verrou de la livraison /
        Process a location report under the delivery lock."""
        async with self.locks.hold(delivery_id):
            delivery = await self.get_delivery(delivery_id)
            if is_terminal(delivery.status):
                LocationPipeline.validate(payload)
                logger.info("delivery %s is %s, location ignored", delivery_id, delivery.status.value)
                return LocationUpdateOutcome(delivery=delivery, stored=False, reason="delivery_closed")

            result = await LocationPipeline(self.db).process(delivery_id, payload)
            if not result.stored:
                return LocationUpdateOutcome(delivery=delivery, stored=False, reason=result.reason)

            sample = result.sample
            state = await self.get_state(delivery_id)
            crossings = await GeofenceRegistry(self.db).evaluate(delivery_id, sample)
            transitions, arrival_at = await self._apply_geofence_triggers(delivery, crossings, state)
            issues = await IssueDetector(self.db).detect(sample, state)

            prediction = None
            if not is_terminal(delivery.status):
                prediction = await self.eta.predict_remaining(delivery, sample, state)
            await self._commit()

        outcome = LocationUpdateOutcome(
            delivery=delivery,
            stored=True,
            sample=sample,
            crossings=crossings,
            transitions=transitions,
            issues=issues,
            arrival_at=arrival_at,
            prediction=prediction,
        )
        await self._notify_location(outcome)
        return outcome

    async def _apply_geofence_triggers(
        self,
        delivery: Delivery,
        crossings: list[GeofenceCrossing],
        state: TrackingState,
    ) -> tuple[list[StatusTransition], str | None]:
        transitions: list[StatusTransition] = []
        arrival_at = None
        machine = DeliveryStateMachine(self.db)
        for crossing in crossings:
            if crossing.event_type != GeofenceEventType.ENTER:
                continue
            if crossing.kind == GeofenceKind.PICKUP:
                if delivery.status == DeliveryStatus.PICKUP_PENDING:
                    continue
                # Seule une livraison assignee demarre par la zone / Only an assigned delivery starts from the zone
                if delivery.status != DeliveryStatus.ASSIGNED:
                    await machine.reject(
                        delivery, DeliveryStatus.PICKUP_PENDING, TransitionSource.GEOFENCE,
                        reason="entered pickup zone",
                    )
                    continue
                transitions.append(await machine.transition(
                    delivery, DeliveryStatus.PICKUP_PENDING, TransitionSource.GEOFENCE,
                    reason="entered pickup zone",
                ))
            elif crossing.kind == GeofenceKind.DELIVERY and delivery.status in ARRIVAL_STATUSES:
                arrival_at = crossing.event.timestamp
                state.arrival_detected_at = arrival_at
        return transitions, arrival_at

    async def _notify_location(self, outcome: LocationUpdateOutcome) -> None:
        delivery = outcome.delivery
        await self.notifier.location_update(outcome.sample, delivery.status)
        for crossing in outcome.crossings:
            await self.notifier.geofence_event(delivery.id, crossing)
        if outcome.arrival_at:
            await self.notifier.arrival(delivery.id, outcome.arrival_at)
        for transition in outcome.transitions:
            await self.notifier.status_change(
                delivery.id, transition.from_status, transition.to_status, transition.source.value,
            )
        if await self.notifier.alerts(outcome.issues):
            try:
                await self.db.commit()
            except SQLAlchemyError:
                logger.exception("delivery %s: could not mark alerts as notified", delivery.id)
        if outcome.prediction is not None:
            await self.notifier.eta_update(outcome.prediction)

    # ─── Statut / Status ───

    async def change_status(
        self,
        delivery_id: int,
        to_status: DeliveryStatus,
        reason: str | None = None,
        source: TransitionSource = TransitionSource.MANUAL,
    ) -> StatusTransition:
        """Transition demandee par un operateur ou le systeme / Operator or system requested transition.

        Une transition refusee est enregistree puis IllegalTransitionError est relevee.
        """
        async with self.locks.hold(delivery_id):
            delivery = await self.get_delivery(delivery_id)
            try:
                record = await DeliveryStateMachine(self.db).transition(delivery, to_status, source, reason)
            except IllegalTransitionError:
                await self._commit()
                raise
            if to_status == DeliveryStatus.DELIVERED:
                await self._record_completion(delivery)
            await self._commit()

        if is_terminal(to_status):
            self.locks.discard(delivery_id)
        await self.notifier.status_change(delivery_id, record.from_status, record.to_status, source.value)
        return record

    async def complete_delivery(self, delivery_id: int, reason: str | None = None) -> dict:
        """Confirmer la livraison et produire le rapport final / Confirm delivery and build the final report."""
        await self.change_status(delivery_id, DeliveryStatus.DELIVERED, reason or "delivery confirmed")
        delivery = await self.get_delivery(delivery_id)
        state = await self.get_state(delivery_id)
        route = (await self.db.execute(
            select(CompletedRoute)
            .where(CompletedRoute.delivery_id == delivery_id)
            .order_by(CompletedRoute.id.desc())
            .limit(1)
        )).scalar_one()
        samples_count = await self.db.scalar(
            select(func.count(LocationSample.id)).where(LocationSample.delivery_id == delivery_id)
        ) or 0
        return {
            "delivery_id": delivery_id,
            "status": delivery.status,
            "picked_up_at": state.picked_up_at,
            "delivered_at": route.completed_at,
            "actual_duration_minutes": route.actual_duration_minutes,
            "predicted_duration_minutes": route.predicted_duration_minutes,
            "eta_accuracy": route.eta_accuracy,
            "on_time": route.on_time,
            "total_distance_km": route.total_distance_km or 0.0,
            "average_speed_kmh": route.average_speed_kmh,
            "issues_count": route.issues_count,
            "samples_count": samples_count,
        }

    async def _record_completion(self, delivery: Delivery) -> CompletedRoute:
        """Ecrire le trajet termine pour l'apprentissage / Write the completed route back for learning."""
        state = await self.get_state(delivery.id)
        delivered_at = now_utc()
        started_at = parse_iso(state.picked_up_at or delivery.created_at)
        actual_minutes = max(0.0, (delivered_at - started_at).total_seconds() / 60.0)

        traveled_m = await self.db.scalar(
            select(func.coalesce(func.sum(LocationSample.distance_since_last), 0.0))
            .where(LocationSample.delivery_id == delivery.id)
        ) or 0.0
        issues_count = await self.db.scalar(
            select(func.count(DeliveryIssue.id)).where(DeliveryIssue.delivery_id == delivery.id)
        ) or 0

        reference = await self._reference_prediction(delivery.id, state.picked_up_at)
        pickup, destination = pickup_of(delivery), destination_of(delivery)
        distance_km = (
            reference.distance_km if reference is not None and reference.distance_km
            else road_distance_km(pickup, destination)
        )

        predicted = reference.duration_minutes if reference is not None else None
        eta_accuracy = None
        on_time = None
        if predicted:
            eta_accuracy = round(max(0.0, 1 - abs(actual_minutes - predicted) / predicted), 4)
            on_time = actual_minutes <= reference.ci90_upper

        factors = reference.factors if reference is not None and reference.factors else {}
        route = CompletedRoute(
            delivery_id=delivery.id,
            transport_mode=delivery.transport_mode,
            origin_label=delivery.pickup_label,
            origin_latitude=delivery.pickup_latitude,
            origin_longitude=delivery.pickup_longitude,
            destination_label=delivery.delivery_label,
            destination_latitude=delivery.delivery_latitude,
            destination_longitude=delivery.delivery_longitude,
            distance_km=round(distance_km, 2),
            predicted_duration_minutes=predicted,
            actual_duration_minutes=round(actual_minutes, 2),
            average_speed_kmh=round(distance_km / (actual_minutes / 60.0), 2) if actual_minutes > 0 else None,
            time_factor=time_factors(started_at).combined_factor,
            weather_factor=factors.get("weather_factor", 1.0),
            traffic_density=traffic_density(delivery.pickup_label, delivery.delivery_label),
            hour_of_day=started_at.hour,
            day_of_week=day_of_week(started_at),
            eta_accuracy=eta_accuracy,
            on_time=on_time,
            issues_count=issues_count,
            total_distance_km=round(traveled_m / 1000.0, 3),
            completed_at=now_iso(),
        )
        self.db.add(route)
        await self.db.flush()
        logger.info(
            "delivery %s completed in %.0f min (predicted %s)",
            delivery.id, actual_minutes, f"{predicted:.0f}" if predicted else "n/a",
        )
        return route

    async def _reference_prediction(self, delivery_id: int, picked_up_at: str | None) -> ETAPrediction | None:
        """Premiere prediction complete apres l'enlevement, sinon la derniere avant /
        First full prediction after pickup, else the last one before it."""
        full = select(ETAPrediction).where(
            ETAPrediction.delivery_id == delivery_id,
            ETAPrediction.kind.in_((PredictionKind.INITIAL, PredictionKind.REFRESH)),
        )
        if picked_up_at:
            after = (await self.db.execute(
                full.where(ETAPrediction.created_at >= picked_up_at)
                .order_by(ETAPrediction.created_at, ETAPrediction.id).limit(1)
            )).scalar_one_or_none()
            if after is not None:
                return after
        return (await self.db.execute(
            full.order_by(ETAPrediction.created_at.desc(), ETAPrediction.id.desc()).limit(1)
        )).scalar_one_or_none()

    # ─── ETA ───

    async def refresh_eta(self, delivery_id: int) -> ETAPrediction | None:
        """Ensemble complet depuis la derniere position /
        Full ensemble from the latest position.

        Calcul hors verrou, ecriture sous verrou apres re-verification du statut ;
        une livraison devenue terminale entre-temps voit l'ecriture ignoree.
        """
        delivery = await self.get_delivery(delivery_id)
        if is_terminal(delivery.status):
            return None

        pipeline = LocationPipeline(self.db)
        last = await pipeline.last_sample(delivery_id)
        state = await self.db.get(TrackingState, delivery_id)
        origin = GeoPoint(last.latitude, last.longitude) if last is not None else None
        now = now_utc()
        context, result = await self.eta.compute(
            delivery, origin=origin, departure=now, filter_state=FilterState.from_tracking_state(state),
        )

        async with self.locks.hold(delivery_id):
            await self.db.refresh(delivery, ["status"])
            if is_terminal(delivery.status):
                logger.warning(
                    "[late write] delivery %s became %s during ETA refresh, prediction discarded",
                    delivery_id, delivery.status.value,
                )
                return None
            last = await pipeline.last_sample(delivery_id)
            if state is not None and last is not None:
                await self.db.refresh(state)
                await IssueDetector(self.db).report_signal_lost(delivery_id, state, last.timestamp, now)
            prediction = await self.eta.store(delivery, context, result, PredictionKind.REFRESH)
            await self._commit()

        await self.notifier.eta_update(prediction)
        return prediction
