"""
Service de prediction ETA / ETA prediction service.
Ensemble complet (creation, rafraichissement periodique) et temps restant sur mise a jour GPS.
Full ensemble (creation, periodic refresh) and remaining time on GPS updates.
"""

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.models.delivery import Delivery
from delivery_tracking.models.eta_prediction import ETAPrediction, PredictionKind, PredictionQuality
from delivery_tracking.models.location_sample import LocationSample
from delivery_tracking.models.tracking_state import TrackingState
from delivery_tracking.services.eta.ensemble import EnsembleResult, combine, interval_from, run_estimators
from delivery_tracking.services.eta.estimators import (
    MIN_FILTER_VELOCITY_KMH,
    MODE_SPEEDS_KMH,
    Estimator,
    PredictionContext,
    default_estimators,
)
from delivery_tracking.services.eta.factors import (
    HttpWeatherProvider,
    StaticWeatherProvider,
    WeatherProvider,
    time_factors,
    traffic_density,
)
from delivery_tracking.services.eta.filter import FilterState
from delivery_tracking.services.eta.history import RouteHistory
from delivery_tracking.services.eta.routing import (
    CityPairRoutingProvider,
    OSRMRoutingProvider,
    RoutingProvider,
)
from delivery_tracking.utils.geo import GeoPoint
from delivery_tracking.utils.timeutils import now_iso, now_utc, parse_iso, to_iso

logger = logging.getLogger(__name__)

FULL_KINDS = (PredictionKind.INITIAL, PredictionKind.REFRESH)


def default_routing_provider() -> RoutingProvider:
    """OSRM si configure, sinon table ville-a-ville + Haversine /
    OSRM when configured, else city-pair table + Haversine."""
    offline = CityPairRoutingProvider()
    if settings.ROUTING_URL:
        return OSRMRoutingProvider(
            settings.ROUTING_URL,
            profile=settings.ROUTING_PROFILE,
            timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
            fallback=offline,
        )
    return offline


def default_weather_provider() -> WeatherProvider:
    if settings.WEATHER_URL:
        return HttpWeatherProvider(settings.WEATHER_URL, timeout=settings.EXTERNAL_TIMEOUT_SECONDS)
    return StaticWeatherProvider(settings.WEATHER_CONDITION)


def destination_of(delivery: Delivery) -> GeoPoint:
    return GeoPoint(delivery.delivery_latitude, delivery.delivery_longitude, delivery.delivery_label)


def pickup_of(delivery: Delivery) -> GeoPoint:
    return GeoPoint(delivery.pickup_latitude, delivery.pickup_longitude, delivery.pickup_label)


def normal_cdf(x: float) -> float:
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


class ETAPredictionService:
    """Predictions ETA d'une livraison / ETA predictions for a delivery."""

    def __init__(
        self,
        db: AsyncSession,
        routing: RoutingProvider | None = None,
        weather: WeatherProvider | None = None,
        estimators: list[Estimator] | None = None,
        history: RouteHistory | None = None,
    ):
        self.db = db
        self.routing = routing or default_routing_provider()
        self.weather = weather or default_weather_provider()
        self.estimators = estimators if estimators is not None else default_estimators()
        self.history = history or RouteHistory(db)

    # ─── Ensemble complet / Full ensemble ───

    async def build_context(
        self,
        delivery: Delivery,
        origin: GeoPoint | None = None,
        departure: datetime | None = None,
        filter_state: FilterState | None = None,
    ) -> PredictionContext:
        departure = departure or now_utc()
        pickup = pickup_of(delivery)
        destination = destination_of(delivery)
        origin = origin or pickup

        route = await self.routing.route(origin, destination)
        weather = await self.weather.weather_factor(origin, departure)
        # Historique sur l'identite du trajet (enlevement -> livraison) / History keyed on the route identity
        history = await self.history.for_route(pickup, destination, delivery.transport_mode, departure)

        return PredictionContext(
            origin=origin,
            destination=destination,
            mode=delivery.transport_mode,
            departure=departure,
            distance_km=route.distance_km,
            time=time_factors(departure),
            weather_factor=weather,
            traffic_density=traffic_density(delivery.pickup_label, delivery.delivery_label),
            history=history,
            filter_state=filter_state,
        )

    async def compute(
        self,
        delivery: Delivery,
        origin: GeoPoint | None = None,
        departure: datetime | None = None,
        filter_state: FilterState | None = None,
    ) -> tuple[PredictionContext, EnsembleResult]:
        """Calculer sans ecrire / Compute without writing."""
        context = await self.build_context(delivery, origin, departure, filter_state)
        estimates = run_estimators(self.estimators, context)
        return context, combine(estimates, context)

    async def store(
        self,
        delivery: Delivery,
        context: PredictionContext,
        result: EnsembleResult,
        kind: PredictionKind,
    ) -> ETAPrediction:
        ci = result.interval
        prediction = ETAPrediction(
            delivery_id=delivery.id,
            kind=kind,
            duration_minutes=round(result.duration_minutes, 2),
            arrival_at=result.arrival_at,
            distance_km=round(result.distance_km, 2),
            average_speed_kmh=round(result.average_speed_kmh, 2),
            ci_mean=ci.mean,
            ci_std_dev=ci.std_dev,
            ci90_lower=ci.lower_90,
            ci90_upper=ci.upper_90,
            ci95_lower=ci.lower_95,
            ci95_upper=ci.upper_95,
            quality=result.quality,
            model_breakdown=result.breakdown,
            factors={
                "time_factor": context.time.as_dict(),
                "weather_factor": context.weather_factor,
                "traffic_density": context.traffic_density,
                "historical_accuracy": round(context.history.accuracy, 4),
                "historical_routes": context.history.count,
                "weights": {k: round(v, 4) for k, v in result.weights.items()},
            },
            error=result.error,
            created_at=now_iso(),
        )
        self.db.add(prediction)

        state = await self.db.get(TrackingState, delivery.id)
        if state is not None:
            state.last_full_prediction_at = prediction.created_at
        await self.db.flush()
        return prediction

    async def predict(
        self,
        delivery: Delivery,
        kind: PredictionKind = PredictionKind.INITIAL,
        origin: GeoPoint | None = None,
        departure: datetime | None = None,
        filter_state: FilterState | None = None,
    ) -> ETAPrediction:
        """Ensemble complet persiste / Persisted full ensemble."""
        context, result = await self.compute(delivery, origin, departure, filter_state)
        return await self.store(delivery, context, result, kind)

    # ─── Temps restant / Remaining time ───

    async def predict_remaining(
        self,
        delivery: Delivery,
        sample: LocationSample,
        state: TrackingState,
    ) -> ETAPrediction:
        """Mise a jour du filtre puis temps restant / Filter update then remaining time.

        Pas d'ensemble complet ici / No full ensemble here.
        """
        filter_state = FilterState.from_tracking_state(state)
        speed = sample.effective_speed
        if speed is not None:
            filter_state.update_velocity(speed, sample.timestamp)
            filter_state.apply_to(state)

        at = parse_iso(sample.timestamp)
        current = GeoPoint(sample.latitude, sample.longitude)
        route = await self.routing.route(current, destination_of(delivery))
        factors = time_factors(at)

        velocity = filter_state.velocity_kmh if filter_state.initialized else 0.0
        velocity_source = "filter"
        if velocity < MIN_FILTER_VELOCITY_KMH:
            velocity = MODE_SPEEDS_KMH[delivery.transport_mode] * factors.combined_factor
            velocity_source = "mode_profile"

        duration = route.distance_km / velocity * 60.0
        sigma_v = math.sqrt(max(filter_state.velocity_variance, 0.0)) if filter_state.initialized else velocity * 0.2
        std_dev = duration * min(1.0, sigma_v / velocity)
        interval = interval_from(duration, std_dev)
        arrival_at = to_iso(at + timedelta(minutes=duration))

        reference = await self.latest(delivery.id, kinds=FULL_KINDS)
        delay_probability = None
        if reference is not None:
            delay_minutes = (parse_iso(arrival_at) - parse_iso(reference.arrival_at)).total_seconds() / 60.0
            delay_probability = round(normal_cdf(delay_minutes / max(std_dev, 1.0)), 3)

        prediction = ETAPrediction(
            delivery_id=delivery.id,
            kind=PredictionKind.REMAINING,
            duration_minutes=round(duration, 2),
            arrival_at=arrival_at,
            distance_km=round(route.distance_km, 2),
            average_speed_kmh=round(velocity, 2),
            ci_mean=interval.mean,
            ci_std_dev=interval.std_dev,
            ci90_lower=interval.lower_90,
            ci90_upper=interval.upper_90,
            ci95_lower=interval.lower_95,
            ci95_upper=interval.upper_95,
            quality=reference.quality if reference is not None else PredictionQuality.LOW,
            model_breakdown={
                "filter": {
                    "velocity_kmh": round(velocity, 2),
                    "velocity_source": velocity_source,
                    "velocity_variance": round(filter_state.velocity_variance, 4),
                    "confidence": filter_state.confidence,
                },
            },
            factors={
                "remaining_distance_km": round(route.distance_km, 2),
                "routing_source": route.source,
                "time_factor": factors.as_dict(),
            },
            delay_probability=delay_probability,
            created_at=now_iso(),
        )
        self.db.add(prediction)
        await self.db.flush()
        return prediction

    # ─── Lecture / Reads ───

    async def latest(
        self,
        delivery_id: int,
        kinds: tuple[PredictionKind, ...] | None = None,
    ) -> ETAPrediction | None:
        return await latest_prediction(self.db, delivery_id, kinds)


async def latest_prediction(
    db: AsyncSession,
    delivery_id: int,
    kinds: tuple[PredictionKind, ...] | None = None,
) -> ETAPrediction | None:
    """Derniere prediction (la plus recente gagne) / Latest prediction (most recent wins)."""
    query = select(ETAPrediction).where(ETAPrediction.delivery_id == delivery_id)
    if kinds:
        query = query.where(ETAPrediction.kind.in_(kinds))
    result = await db.execute(query.order_by(ETAPrediction.created_at.desc(), ETAPrediction.id.desc()).limit(1))
    return result.scalar_one_or_none()


def prediction_to_dict(prediction: ETAPrediction) -> dict:
    """Prediction -> forme API / Prediction -> API shape."""
    return {
        "id": prediction.id,
        "delivery_id": prediction.delivery_id,
        "kind": prediction.kind,
        "duration_minutes": prediction.duration_minutes,
        "arrival_at": prediction.arrival_at,
        "distance_km": prediction.distance_km,
        "average_speed_kmh": prediction.average_speed_kmh,
        "confidence_interval": {
            "mean": prediction.ci_mean,
            "std_dev": prediction.ci_std_dev,
            "confidence_90": {"lower": prediction.ci90_lower, "upper": prediction.ci90_upper},
            "confidence_95": {"lower": prediction.ci95_lower, "upper": prediction.ci95_upper},
        },
        "quality": prediction.quality,
        "model_breakdown": prediction.model_breakdown,
        "factors": prediction.factors,
        "delay_probability": prediction.delay_probability,
        "error": prediction.error,
        "created_at": prediction.created_at,
    }
