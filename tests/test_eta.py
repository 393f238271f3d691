"""Tests de l'ensemble ETA / ETA ensemble tests."""

import math
from datetime import datetime, timezone

import httpx
import pytest

from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import TransportMode
from delivery_tracking.models.eta_prediction import PredictionQuality
from delivery_tracking.services.eta import (
    BaselineEstimator,
    CityPairRoutingProvider,
    FilterEstimator,
    FilterState,
    HaversineRoutingProvider,
    HistoricalData,
    HttpWeatherProvider,
    ModelEstimate,
    OSRMRoutingProvider,
    PredictionContext,
    PseudoMLEstimator,
    PseudoMLWeights,
    RegressionEstimator,
    StaticWeatherProvider,
    combine,
    confidence_interval,
    default_estimators,
    model_weights,
    quality_label,
    run_estimators,
    time_factors,
    traffic_density,
)
from delivery_tracking.services.eta.ensemble import interval_from
from delivery_tracking.services.eta.factors import day_of_week
from delivery_tracking.services.eta.history import historical_accuracy
from delivery_tracking.utils.geo import GeoPoint

DHAKA = GeoPoint(23.8103, 90.4125, "Dhaka")
CHITTAGONG = GeoPoint(22.3569, 91.7832, "Chittagong")
# Mercredi 3 janvier 2024, midi / Wednesday 3 January 2024, noon
NOON = datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc)


def context(history: HistoricalData | None = None, departure: datetime = NOON, **overrides) -> PredictionContext:
    values = {
        "origin": DHAKA,
        "destination": CHITTAGONG,
        "mode": TransportMode.TRUCK,
        "departure": departure,
        "distance_km": 244.0,
        "time": time_factors(departure),
        "weather_factor": 1.0,
        "traffic_density": traffic_density("Dhaka", "Chittagong"),
        "history": history or HistoricalData(),
    }
    values.update(overrides)
    return PredictionContext(**values)


def route(distance_km: float, duration: float, predicted: float | None = None) -> CompletedRoute:
    return CompletedRoute(
        transport_mode=TransportMode.TRUCK,
        origin_label="Dhaka",
        origin_latitude=DHAKA.latitude,
        origin_longitude=DHAKA.longitude,
        destination_label="Chittagong",
        destination_latitude=CHITTAGONG.latitude,
        destination_longitude=CHITTAGONG.longitude,
        distance_km=distance_km,
        predicted_duration_minutes=predicted,
        actual_duration_minutes=duration,
        average_speed_kmh=distance_km / (duration / 60),
        time_factor=0.8,
        weather_factor=1.0,
        traffic_density=0.8,
        hour_of_day=12,
        day_of_week=3,
        issues_count=0,
        completed_at="2024-01-01T12:00:00+00:00",
    )


class BrokenEstimator:
    def __init__(self, name: str):
        self.name = name

    def estimate(self, context):
        raise RuntimeError("model unavailable")


class NegativeEstimator:
    name = "ml"

    def estimate(self, context):
        return ModelEstimate(model=self.name, duration_minutes=-5.0, arrival_at=None,
                             average_speed_kmh=None, confidence=0.5)


# ─── Facteurs / Factors ───

@pytest.mark.parametrize(
    "hour, period, factor",
    [
        (8, "rush_morning", 0.6),
        (9, "rush_morning", 0.6),
        (12, "business_hours", 0.8),
        (17, "rush_evening", 0.5),
        (20, "evening", 0.9),
        (2, "night", 1.2),
        (23, "night", 1.2),
    ],
)
def test_time_factors_weekday(hour, period, factor):
    factors = time_factors(NOON.replace(hour=hour))
    assert factors.period == period
    assert factors.combined_factor == pytest.approx(factor)
    assert factors.day_factor == 1.0


def test_time_factors_weekend():
    saturday = datetime(2024, 1, 6, 12, 0, tzinfo=timezone.utc)
    factors = time_factors(saturday)
    assert factors.combined_factor == pytest.approx(0.8 * 1.1)
    assert factors.day_factor == 1.1


def test_day_of_week_starts_sunday():
    assert day_of_week(datetime(2024, 1, 7, tzinfo=timezone.utc)) == 0
    assert day_of_week(NOON) == 3


def test_traffic_density():
    assert traffic_density("Dhaka", "Chittagong") == pytest.approx(0.8)
    assert traffic_density("Dhaka", "Rajshahi") == pytest.approx(0.6)
    assert traffic_density(None, None) == pytest.approx(0.5)


# ─── Modeles / Estimators ───

def test_baseline_truck_244_km():
    estimate = BaselineEstimator().estimate(context())
    # 244 km a 35 km/h ~ 418 min, divise par le facteur horaire / divided by the time factor
    assert 244 / 35 * 60 == pytest.approx(418.29, abs=0.01)
    assert estimate.duration_minutes == pytest.approx(418.2857 / 0.8, rel=1e-4)
    assert estimate.average_speed_kmh == pytest.approx(28.0)
    assert estimate.confidence == 0.75
    assert estimate.arrival_at.startswith("2024-01-03T20:42")


def test_regression_delegates_without_history():
    ctx = context()
    regression = RegressionEstimator().estimate(ctx)
    baseline = BaselineEstimator().estimate(ctx)
    assert regression.model == "regression"
    assert regression.duration_minutes == baseline.duration_minutes


def test_regression_fits_history():
    routes = [route(d, 2 * d + 10) for d in (100, 150, 200, 250, 300, 350)]
    estimate = RegressionEstimator().estimate(context(HistoricalData(routes=routes)))
    assert estimate.duration_minutes == pytest.approx(2 * 244 + 10, rel=1e-3)
    assert estimate.confidence == pytest.approx(0.95)


def test_regression_minimum_duration():
    routes = [route(d, 2 * d - 150) for d in (100, 150, 200, 250, 300)]
    estimate = RegressionEstimator().estimate(context(HistoricalData(routes=routes), distance_km=0.1))
    assert estimate.duration_minutes == 10.0


def test_filter_estimator_city_profile_when_unseeded():
    estimate = FilterEstimator().estimate(context())
    assert estimate.average_speed_kmh == pytest.approx(30 * 0.8)
    assert estimate.duration_minutes == pytest.approx(244 / 24 * 60)
    assert estimate.confidence == 0.85


def test_filter_estimator_uses_seeded_velocity_and_variance():
    state = FilterState()
    state.update_velocity(61.0, "2024-01-03T11:55:00+00:00")
    routes = [route(200, 240), route(200, 300)]  # 50 et 40 km/h / 50 and 40 km/h
    estimate = FilterEstimator().estimate(context(HistoricalData(routes=routes), filter_state=state))
    assert estimate.duration_minutes == pytest.approx(244 / 61 * 60 * (1 + 25 / 100))


def test_pseudo_ml_bounded_and_deterministic():
    ctx = context()
    weights = PseudoMLWeights()
    first = PseudoMLEstimator(weights).estimate(ctx)
    second = PseudoMLEstimator(weights).estimate(ctx)
    assert first.duration_minutes == second.duration_minutes
    assert 35 * 0.7 <= first.average_speed_kmh <= 35 * 1.3


def test_pseudo_ml_weights_are_replaceable():
    neutral = PseudoMLWeights(output=(0.0, 0.0, 0.0, 0.0))
    estimate = PseudoMLEstimator(neutral).estimate(context())
    assert estimate.average_speed_kmh == pytest.approx(35.0)


def test_filter_state_update():
    state = FilterState()
    assert not state.initialized
    assert state.confidence == 0.0

    state.update_velocity(50.0, "2024-01-03T12:00:00+00:00")
    assert state.velocity_kmh == 50.0
    assert state.velocity_variance == 1.0

    state.update_velocity(60.0, "2024-01-03T12:01:00+00:00")
    assert 50.0 < state.velocity_kmh < 60.0
    assert state.velocity_variance < 1.0
    assert 0.1 <= state.confidence <= 0.95


# ─── Combinaison / Combination ───

def test_weights():
    assert model_weights(10) == {"regression": 0.35, "filter": 0.25, "ml": 0.25, "baseline": 0.15}
    assert model_weights(2)["baseline"] == 0.40
    assert model_weights(2)["regression"] == 0.20


def test_ensemble_without_history_leans_on_baseline():
    ctx = context()
    estimates = run_estimators(default_estimators(), ctx)
    result = combine(estimates, ctx)

    assert sum(result.weights.values()) == pytest.approx(1.0)
    assert result.weights["baseline"] == pytest.approx(2 * result.weights["regression"])
    assert result.weights["baseline"] > result.weights["filter"]
    durations = [e.duration_minutes for e in estimates]
    assert min(durations) <= result.duration_minutes <= max(durations)
    assert result.quality == PredictionQuality.LOW
    assert set(result.breakdown) == {"regression", "filter", "ml", "baseline"}
    assert result.error is None


def test_failed_model_is_excluded():
    ctx = context()
    estimates = run_estimators([BrokenEstimator("regression"), NegativeEstimator(), BaselineEstimator()], ctx)
    assert estimates[0].confidence == 0.0
    assert "model unavailable" in estimates[0].error
    assert estimates[1].error.startswith("invalid duration")

    result = combine(estimates, ctx)
    assert result.weights == {"baseline": pytest.approx(1.0)}
    assert result.duration_minutes == pytest.approx(estimates[2].duration_minutes)
    assert result.breakdown["regression"]["error"]


def test_all_models_failing_uses_fallback():
    ctx = context()
    estimates = run_estimators([BrokenEstimator("regression"), BrokenEstimator("baseline")], ctx)
    result = combine(estimates, ctx)

    assert result.duration_minutes == pytest.approx(150.0)
    assert result.distance_km == 100.0
    assert result.average_speed_kmh == 40.0
    assert result.quality == PredictionQuality.LOW
    assert "all ETA models failed" in result.error
    assert result.interval.lower_90 <= result.interval.mean <= result.interval.upper_90


@pytest.mark.parametrize(
    "durations, accuracy",
    [
        ([418.0, 420.0, 430.0, 500.0], 0.8),
        ([3.0, 4.0, 2.5], 0.9),
        ([60.0], None),
        ([10.0, 200.0], 0.1),
        ([6.0, 7.0, 5.5, 8.0], 1.0),
    ],
)
def test_confidence_interval_brackets_mean(durations, accuracy):
    ci = confidence_interval(durations, accuracy)
    assert ci.lower_95 <= ci.lower_90 <= ci.mean <= ci.upper_90 <= ci.upper_95
    assert ci.mean == pytest.approx(sum(durations) / len(durations), abs=0.01)


def test_confidence_interval_width():
    ci = confidence_interval([90.0, 110.0], 0.8)
    # std population 10, divise par 0.8 / population std 10, divided by 0.8
    assert ci.std_dev == pytest.approx(12.5)
    assert ci.upper_90 == pytest.approx(100 + 1.645 * 12.5, abs=0.01)
    assert ci.lower_95 == pytest.approx(100 - 1.96 * 12.5, abs=0.01)


def test_lower_bound_floor():
    ci = interval_from(20.0, 30.0)
    assert ci.lower_90 == 5.0
    assert interval_from(3.0, 10.0).lower_90 == 3.0


def test_quality_degrades_with_history():
    assert quality_label(25, 0.95) == PredictionQuality.HIGH
    assert quality_label(12, 0.85) == PredictionQuality.MEDIUM
    assert quality_label(25, 0.85) == PredictionQuality.MEDIUM
    assert quality_label(8, 0.95) == PredictionQuality.LOW
    assert quality_label(12, 0.5) == PredictionQuality.LOW


def test_quality_downgraded_on_disagreement():
    assert quality_label(25, 0.95, coefficient_of_variation=0.6) == PredictionQuality.MEDIUM
    assert quality_label(12, 0.85, coefficient_of_variation=0.6) == PredictionQuality.LOW
    assert quality_label(3, 0.5, coefficient_of_variation=0.6) == PredictionQuality.LOW


def test_historical_accuracy():
    routes = [route(200, 110, predicted=100), route(200, 90, predicted=100)]
    assert historical_accuracy(routes) == pytest.approx(0.9)
    assert historical_accuracy([route(200, 100)], default=0.8) == 0.8


# ─── Fournisseurs / Providers ───

async def test_city_pair_distance_both_directions():
    provider = CityPairRoutingProvider()
    forward = await provider.route(DHAKA, CHITTAGONG)
    backward = await provider.route(GeoPoint(22.3569, 91.7832, "chittagong "), GeoPoint(23.8103, 90.4125, "DHAKA"))
    assert forward.distance_km == backward.distance_km == 244.0
    assert forward.source == "city_pair"


async def test_city_pair_unknown_falls_back_to_haversine():
    provider = CityPairRoutingProvider()
    estimate = await provider.route(GeoPoint(23.8103, 90.4125, "Dhaka"), GeoPoint(24.3745, 88.6042, "Bogura"))
    expected = await HaversineRoutingProvider().route(DHAKA, GeoPoint(24.3745, 88.6042))
    assert estimate.source == "haversine"
    assert estimate.distance_km == expected.distance_km


async def test_osrm_route():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 250000.0, "duration": 18000.0}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = OSRMRoutingProvider("http://osrm.test/", client=client)
        estimate = await provider.route(DHAKA, CHITTAGONG)

    assert estimate.distance_km == 250.0
    assert estimate.duration_minutes == 300.0
    assert estimate.source == "osrm"
    assert seen[0].path == "/route/v1/driving/90.4125,23.8103;91.7832,22.3569"
    assert seen[0].params["overview"] == "false"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"code": "NoRoute", "message": "no route"}),
        httpx.Response(200, json={"code": "Ok", "routes": []}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_osrm_failure_falls_back(response):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)) as client:
        provider = OSRMRoutingProvider("http://osrm.test", client=client, fallback=CityPairRoutingProvider())
        estimate = await provider.route(DHAKA, CHITTAGONG)
    assert estimate.source == "city_pair"
    assert estimate.distance_km == 244.0


async def test_weather_providers():
    assert await StaticWeatherProvider("heavy_rain").weather_factor(DHAKA, NOON) == 0.65
    assert await StaticWeatherProvider().weather_factor(DHAKA, NOON) == 1.0

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["lat"] == "23.8103"
        return httpx.Response(200, json={"condition": "fog"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await HttpWeatherProvider("http://weather.test", client=client).weather_factor(DHAKA, NOON) == 0.75

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503))) as client:
        assert await HttpWeatherProvider("http://weather.test", client=client).weather_factor(DHAKA, NOON) == 1.0


@pytest.mark.parametrize("payload", [{"condition": 5}, {"condition": None}, {"condition": ["fog"]}, {}, ["fog"]])
async def test_http_weather_bad_payload_falls_back_to_clear(payload):
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
    async with httpx.AsyncClient(transport=transport) as client:
        assert await HttpWeatherProvider("http://weather.test", client=client).weather_factor(DHAKA, NOON) == 1.0


def test_failed_estimate_shape():
    failed = ModelEstimate.failed("ml", "boom")
    assert not failed.ok
    assert failed.as_dict() == {
        "duration_minutes": None, "arrival_at": None, "average_speed_kmh": None, "confidence": 0.0, "error": "boom",
    }
    assert math.isclose(ModelEstimate("x", 10.0, None, 5.0, 0.5).as_dict()["duration_minutes"], 10.0)
