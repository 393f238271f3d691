"""Tests des lectures du suivi / Tracking query tests."""

from datetime import timedelta

import pytest

from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import DeliveryStatus, TransportMode
from delivery_tracking.models.delivery_issue import IssueSeverity, IssueType
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.services.tracking_query import TrackingQueryService, journey_statistics, tracking_quality
from delivery_tracking.utils.timeutils import now_utc, to_iso

MIDWAY = (23.08, 91.10)


def samples_from(clock, rows) -> list[LocationSample]:
    """rows: (secondes, distance m, vitesse km/h, precision m) / (seconds, distance m, speed km/h, accuracy m)."""
    return [
        LocationSample(
            delivery_id=1, latitude=0.0, longitude=0.0, timestamp=to_iso(clock(t)), received_at=to_iso(clock(t)),
            distance_since_last=distance, reported_speed=speed, accuracy=accuracy,
        )
        for t, distance, speed, accuracy in rows
    ]


def test_journey_statistics(clock):
    samples = samples_from(clock, [
        (0, None, 40.0, 10.0),
        (600, 6000.0, 36.0, 10.0),
        (1200, 0.0, 0.5, 10.0),
        (1800, 0.0, 0.0, 10.0),
        (2400, 5000.0, 30.0, 10.0),
        (3000, 0.0, 1.0, 10.0),
    ])
    stats = journey_statistics(samples)
    assert stats["total_distance_km"] == 11.0
    assert stats["duration_minutes"] == 50.0
    assert stats["average_speed_kmh"] == pytest.approx(11.0 / (50 / 60), abs=0.01)
    assert stats["stops_count"] == 2


def test_journey_statistics_empty():
    assert journey_statistics([]) == {
        "total_distance_km": 0.0, "average_speed_kmh": 0.0, "stops_count": 0, "duration_minutes": 0.0,
    }


def test_tracking_quality(clock):
    assert tracking_quality([]) == "unknown"
    good = samples_from(clock, [(0, None, 30, 8), (60, 500, 30, 12)])
    fair = samples_from(clock, [(0, None, 30, 40), (60, 500, 30, 45)])
    gap = samples_from(clock, [(0, None, 30, 8), (480, 500, 30, 8)])
    poor = samples_from(clock, [(0, None, 30, 80), (60, 500, 30, 90)])
    assert tracking_quality(good) == "good"
    assert tracking_quality(fair) == "fair"
    assert tracking_quality(gap) == "fair"
    assert tracking_quality(poor) == "poor"


async def test_tracking_view(db, tracking, new_delivery, clock):
    delivery = await new_delivery(status=DeliveryStatus.IN_TRANSIT)
    await tracking.process_location_update(delivery.id, {
        "latitude": MIDWAY[0], "longitude": MIDWAY[1], "speed": 45, "accuracy": 150,
        "timestamp": clock(0).isoformat(),
    })

    view = await TrackingQueryService(db).get_tracking_view(delivery.id)
    assert view["current_status"] == DeliveryStatus.IN_TRANSIT
    assert view["current_location"]["latitude"] == MIDWAY[0]
    assert view["current_speed"] == 45
    assert view["geofence_status"] == {"pickup_location": "outside", "delivery_location": "outside"}
    assert view["latest_eta"]["kind"].value == "remaining"
    assert [a.issue_type for a in view["active_alerts"]] == [IssueType.POOR_GPS_ACCURACY]
    assert view["tracking_quality"] == "poor"
    metrics = view["real_time_metrics"]
    assert 0 < metrics["progress_percentage"] < 100
    assert metrics["remaining_distance_km"] > 0


async def test_tracking_view_without_samples(db, new_delivery):
    delivery = await new_delivery()
    view = await TrackingQueryService(db).get_tracking_view(delivery.id)
    assert view["current_location"] is None
    assert view["tracking_quality"] == "unknown"
    assert view["latest_eta"]["kind"].value == "initial"
    assert view["last_updated"] == delivery.updated_at


async def test_history_window(db, tracking, new_delivery):
    delivery = await new_delivery(status=DeliveryStatus.IN_TRANSIT)
    recent = now_utc().replace(microsecond=0)
    for hours_ago in (30, 2, 1):
        await tracking.process_location_update(delivery.id, {
            "latitude": MIDWAY[0] + hours_ago * 0.01, "longitude": MIDWAY[1],
            "timestamp": (recent - timedelta(hours=hours_ago)).isoformat(),
        })

    history = await TrackingQueryService(db).get_history(delivery.id, hours=24)
    assert history["hours"] == 24
    assert len(history["samples"]) == 2
    assert len((await TrackingQueryService(db).get_history(delivery.id, hours=48))["samples"]) == 3


async def test_alert_filters(db, tracking, new_delivery, clock):
    delivery = await new_delivery(status=DeliveryStatus.IN_TRANSIT)
    await tracking.process_location_update(delivery.id, {
        "latitude": MIDWAY[0], "longitude": MIDWAY[1], "speed": 140, "battery_level": 10,
        "timestamp": clock(0).isoformat(),
    })
    query = TrackingQueryService(db)
    assert len(await query.active_alerts()) == 2
    high = await query.active_alerts(severity=IssueSeverity.HIGH)
    assert [a.issue_type for a in high] == [IssueType.EXCESSIVE_SPEED]
    assert await query.active_alerts(delivery_id=delivery.id + 1) == []


def route(mode, duration, accuracy, on_time, issues, days_ago=1) -> CompletedRoute:
    return CompletedRoute(
        delivery_id=None,
        transport_mode=mode,
        origin_latitude=23.8,
        origin_longitude=90.4,
        destination_latitude=22.3,
        destination_longitude=91.8,
        distance_km=200.0,
        actual_duration_minutes=duration,
        eta_accuracy=accuracy,
        on_time=on_time,
        issues_count=issues,
        hour_of_day=9,
        day_of_week=1,
        completed_at=to_iso(now_utc() - timedelta(days=days_ago)),
    )


async def test_performance_metrics(db):
    query = TrackingQueryService(db)
    assert await query.get_performance_metrics() == {"total_deliveries": 0}

    db.add_all([
        route(TransportMode.TRUCK, 300.0, 0.9, True, 0),
        route(TransportMode.TRUCK, 360.0, 0.7, False, 2),
        route(TransportMode.VAN, 240.0, 0.95, True, 0),
        route(TransportMode.VAN, 250.0, 0.85, True, 1, days_ago=60),
    ])
    await db.flush()

    metrics = await query.get_performance_metrics()
    assert metrics["total_deliveries"] == 4
    assert metrics["on_time_percentage"] == 75.0
    assert metrics["issue_rate"] == 50.0
    assert metrics["average_distance_km"] == 200.0

    trucks = await query.get_performance_metrics(transport_mode=TransportMode.TRUCK)
    assert trucks["total_deliveries"] == 2
    assert trucks["average_duration_minutes"] == 330.0
    assert trucks["average_eta_accuracy"] == pytest.approx(0.8)

    recent = await query.get_performance_metrics(days=30)
    assert recent["total_deliveries"] == 3
