"""Tests de l'orchestration du suivi / Tracking orchestration tests."""

import asyncio
import logging
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from delivery_tracking.exceptions import DeliveryNotFoundError, IllegalTransitionError
from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import Delivery, DeliveryStatus, TransportMode
from delivery_tracking.models.delivery_issue import DeliveryIssue, IssueType
from delivery_tracking.models.eta_prediction import ETAPrediction, PredictionKind, PredictionQuality
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.models.status_transition import StatusTransition, TransitionSource
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.services.eta.history import RouteHistory
from delivery_tracking.services.eta.service import latest_prediction
from delivery_tracking.services.notifications import NotificationDispatcher
from delivery_tracking.services.tracking_service import TrackingService
from delivery_tracking.utils.geo import GeoPoint
from delivery_tracking.utils.timeutils import now_utc, to_iso

S = DeliveryStatus
DHAKA = (23.8103, 90.4125)
MIDWAY = (23.08, 91.10)
CHITTAGONG = (22.3569, 91.7832)


def at(point, when, **extra) -> dict:
    return {"latitude": point[0], "longitude": point[1], "timestamp": when.isoformat(), **extra}


async def test_initialize_creates_tracking_context(db, tracking, delivery_data):
    delivery, prediction = await tracking.initialize(delivery_data())

    assert delivery.status == S.ASSIGNED
    assert await db.get(TrackingState, delivery.id) is not None
    assert prediction.kind == PredictionKind.INITIAL
    assert prediction.distance_km == 244.0
    assert prediction.quality == PredictionQuality.LOW
    assert prediction.ci90_lower <= prediction.ci_mean <= prediction.ci90_upper
    assert prediction.ci95_lower <= prediction.ci90_lower
    assert set(prediction.model_breakdown) == {"regression", "filter", "ml", "baseline"}
    assert prediction.factors["historical_routes"] == 0
    assert sum(prediction.factors["weights"].values()) == pytest.approx(1.0, abs=1e-3)

    state = await db.get(TrackingState, delivery.id)
    assert state.last_full_prediction_at == prediction.created_at


async def test_delivery_lifecycle(db, tracking, new_delivery, broadcasts, clock):
    delivery = await new_delivery()
    initial = await latest_prediction(db, delivery.id)

    # Entree dans la zone d'enlevement / Entering the pickup zone
    first = await tracking.process_location_update(delivery.id, at(DHAKA, clock(0)))
    assert first.stored
    assert delivery.status == S.PICKUP_PENDING
    assert [(t.to_status, t.source) for t in first.transitions] == [(S.PICKUP_PENDING, TransitionSource.GEOFENCE)]
    assert first.prediction.kind == PredictionKind.REMAINING
    assert 0.0 <= first.prediction.delay_probability <= 1.0

    kinds = [m["type"] for m in broadcasts]
    assert kinds[:4] == ["location_update", "geofence_enter", "status_change", "eta_update"]

    await tracking.change_status(delivery.id, S.PICKED_UP, "loaded")
    await tracking.change_status(delivery.id, S.IN_TRANSIT)
    await tracking.process_location_update(delivery.id, at(MIDWAY, clock(2 * 3600)))

    broadcasts.clear()
    arrival = await tracking.process_location_update(delivery.id, at(CHITTAGONG, clock(4 * 3600)))
    assert arrival.arrival_at == arrival.sample.timestamp
    assert delivery.status == S.IN_TRANSIT
    assert (await db.get(TrackingState, delivery.id)).arrival_detected_at == arrival.sample.timestamp
    assert "arrival" in [m["type"] for m in broadcasts]

    report = await tracking.complete_delivery(delivery.id)
    assert report["status"] == S.DELIVERED
    assert report["samples_count"] == 3
    assert report["total_distance_km"] > 200
    assert report["predicted_duration_minutes"] == initial.duration_minutes
    assert report["on_time"] is True
    assert report["picked_up_at"] is not None

    route = (await db.execute(select(CompletedRoute))).scalar_one()
    assert route.delivery_id == delivery.id
    assert route.origin_label == "Dhaka"

    closed = await tracking.process_location_update(delivery.id, at(CHITTAGONG, clock(5 * 3600)))
    assert not closed.stored
    assert closed.reason == "delivery_closed"


@pytest.mark.parametrize("status", [S.DELIVERED, S.CANCELLED])
def test_delivery_cannot_start_closed(delivery_data, status):
    with pytest.raises(ValidationError):
        delivery_data(status=status)


async def test_pickup_enter_from_wrong_state_is_rejected(db, tracking, new_delivery, clock):
    delivery = await new_delivery(status=S.IN_TRANSIT)
    outcome = await tracking.process_location_update(delivery.id, at(DHAKA, clock(0)))

    assert outcome.stored
    assert outcome.transitions == []
    assert delivery.status == S.IN_TRANSIT
    rejected = (await db.execute(select(StatusTransition))).scalar_one()
    assert rejected.accepted is False
    assert rejected.source == TransitionSource.GEOFENCE


async def test_failed_delivery_does_not_restart_from_pickup_zone(db, tracking, new_delivery, clock, caplog):
    delivery = await new_delivery(status=S.FAILED)
    with caplog.at_level("WARNING"):
        outcome = await tracking.process_location_update(delivery.id, at(DHAKA, clock(0)))

    assert outcome.transitions == []
    assert delivery.status == S.FAILED
    rejected = (await db.execute(select(StatusTransition))).scalar_one()
    assert rejected.accepted is False
    assert rejected.from_status == S.FAILED
    assert rejected.to_status == S.PICKUP_PENDING
    assert rejected.source == TransitionSource.GEOFENCE
    assert "[inconsistency]" in caplog.text


async def test_pickup_enter_when_already_pending(db, tracking, new_delivery, clock):
    delivery = await new_delivery(status=S.PICKUP_PENDING)
    outcome = await tracking.process_location_update(delivery.id, at(DHAKA, clock(0)))

    assert outcome.transitions == []
    assert delivery.status == S.PICKUP_PENDING
    assert await db.scalar(select(func.count(StatusTransition.id))) == 0


async def test_illegal_status_change_is_committed(session_factory, tracking, new_delivery):
    delivery = await new_delivery()
    with pytest.raises(IllegalTransitionError):
        await tracking.change_status(delivery.id, S.DELIVERED)

    async with session_factory() as other:
        record = (await other.execute(select(StatusTransition))).scalar_one()
        assert record.accepted is False
        assert (await other.get(Delivery, delivery.id)).status == S.ASSIGNED


async def test_unknown_delivery(tracking, clock):
    with pytest.raises(DeliveryNotFoundError):
        await tracking.process_location_update(999, at(DHAKA, clock(0)))
    with pytest.raises(DeliveryNotFoundError):
        await tracking.change_status(999, S.CANCELLED)


async def test_notification_failure_keeps_state(session_factory, db, new_delivery, clock, caplog):
    delivery = await new_delivery()

    async def _broken(message: dict):
        raise ConnectionError("socket closed")

    service = TrackingService(db, notifier=NotificationDispatcher(_broken))
    with caplog.at_level(logging.ERROR):
        outcome = await service.process_location_update(delivery.id, at(MIDWAY, clock(0), speed=130))

    assert outcome.stored
    assert not outcome.issues[0].notified
    assert "notification" in caplog.text
    async with session_factory() as other:
        assert await other.scalar(select(func.count(LocationSample.id))) == 1
        assert await other.scalar(select(func.count(DeliveryIssue.id))) == 1


async def test_remaining_prediction_uses_filter_velocity(tracking, new_delivery, clock):
    delivery = await new_delivery(status=S.IN_TRANSIT)
    outcome = await tracking.process_location_update(delivery.id, at(MIDWAY, clock(0), speed=60))

    prediction = outcome.prediction
    assert prediction.average_speed_kmh == 60.0
    assert prediction.model_breakdown["filter"]["velocity_source"] == "filter"
    assert prediction.duration_minutes == pytest.approx(prediction.distance_km / 60 * 60, rel=1e-3)
    assert prediction.ci90_lower <= prediction.ci_mean <= prediction.ci90_upper


async def test_remaining_prediction_slow_vehicle_uses_mode_profile(tracking, new_delivery, clock):
    delivery = await new_delivery(status=S.IN_TRANSIT)
    outcome = await tracking.process_location_update(delivery.id, at(MIDWAY, clock(0), speed=1))
    assert outcome.prediction.model_breakdown["filter"]["velocity_source"] == "mode_profile"


async def test_refresh_eta_writes_refresh_prediction(db, tracking, new_delivery, broadcasts, clock):
    delivery = await new_delivery(status=S.IN_TRANSIT)
    await tracking.process_location_update(delivery.id, at(MIDWAY, clock(0), speed=55))

    prediction = await tracking.refresh_eta(delivery.id)
    assert prediction.kind == PredictionKind.REFRESH
    assert prediction.distance_km < 244.0
    assert broadcasts[-1]["type"] == "eta_update"
    assert (await db.get(TrackingState, delivery.id)).last_full_prediction_at == prediction.created_at

    # Derniere position il y a 6 h : signal perdu / Last sample 6 h ago: signal lost
    lost = (await db.execute(
        select(DeliveryIssue).where(DeliveryIssue.issue_type == IssueType.SIGNAL_LOST)
    )).scalars().all()
    assert len(lost) == 1


async def test_refresh_eta_skips_terminal_delivery(db, tracking, new_delivery):
    delivery = await new_delivery()
    await tracking.change_status(delivery.id, S.CANCELLED)
    assert await tracking.refresh_eta(delivery.id) is None
    count = await db.scalar(
        select(func.count(ETAPrediction.id)).where(ETAPrediction.kind == PredictionKind.REFRESH)
    )
    assert count == 0


async def test_completed_route_feeds_later_predictions(tracking, new_delivery, delivery_data):
    first = await new_delivery(status=S.IN_TRANSIT)
    await tracking.complete_delivery(first.id)

    _, prediction = await tracking.initialize(delivery_data(order_reference="ORD-002"))
    assert prediction.factors["historical_routes"] == 1


async def test_concurrent_updates_same_delivery_are_serialised(session_factory, new_delivery, clock):
    delivery = await new_delivery(status=S.IN_TRANSIT)

    async def send(i: int):
        async with session_factory() as session:
            service = TrackingService(session)
            return await service.process_location_update(
                delivery.id, at((23.2 + i * 0.01, 91.0), clock(i * 60)),
            )

    outcomes = await asyncio.gather(*(send(i) for i in range(5)))
    assert all(o.stored for o in outcomes)

    async with session_factory() as session:
        samples = (await session.execute(
            select(LocationSample).order_by(LocationSample.timestamp)
        )).scalars().all()
    assert len(samples) == 5
    assert samples[0].computed_speed is None
    assert all(s.computed_speed is not None for s in samples[1:])


# ─── Historique / History ───

def completed(label_a, point_a, label_b, point_b, mode=TransportMode.TRUCK, days_ago=1) -> CompletedRoute:
    return CompletedRoute(
        transport_mode=mode,
        origin_label=label_a,
        origin_latitude=point_a[0],
        origin_longitude=point_a[1],
        destination_label=label_b,
        destination_latitude=point_b[0],
        destination_longitude=point_b[1],
        distance_km=244.0,
        predicted_duration_minutes=400.0,
        actual_duration_minutes=440.0,
        average_speed_kmh=33.3,
        time_factor=0.8,
        weather_factor=1.0,
        traffic_density=0.8,
        hour_of_day=10,
        day_of_week=2,
        issues_count=0,
        completed_at=to_iso(now_utc() - timedelta(days=days_ago)),
    )


async def test_route_history_matching(db):
    db.add_all([
        completed("Chittagong", CHITTAGONG, "Dhaka", DHAKA),
        completed("Dhaka", DHAKA, "Chittagong", CHITTAGONG),
        completed("Dhaka", DHAKA, "Chittagong", CHITTAGONG, mode=TransportMode.VAN),
        completed("Dhaka", DHAKA, "Chittagong", CHITTAGONG, days_ago=200),
        completed(None, (23.812, 90.414), None, (22.358, 91.781)),
    ])
    await db.flush()
    history = RouteHistory(db)
    now = now_utc()

    by_label = await history.for_route(
        GeoPoint(*DHAKA, "dhaka"), GeoPoint(*CHITTAGONG, "CHITTAGONG"), TransportMode.TRUCK, now,
    )
    assert by_label.matched_by == "label"
    assert by_label.count == 2
    assert by_label.accuracy == pytest.approx(0.9)

    nearby = await history.for_route(GeoPoint(*DHAKA), GeoPoint(*CHITTAGONG), TransportMode.TRUCK, now)
    assert nearby.matched_by == "nearby"
    assert nearby.count == 3

    none = await history.for_route(GeoPoint(*DHAKA), GeoPoint(*CHITTAGONG), TransportMode.BICYCLE, now)
    assert none.count == 0
    assert none.accuracy == 0.8
