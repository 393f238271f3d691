"""
Modeles ETA de l'ensemble / ETA ensemble estimators.
Chaque modele renvoie un ModelEstimate ; un echec se traduit par confidence=0 et une erreur.
Each model returns a ModelEstimate; a failure shows up as confidence=0 plus an error.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Protocol

import numpy as np

from delivery_tracking.exceptions import EstimatorError
from delivery_tracking.models.delivery import TransportMode
from delivery_tracking.services.eta.factors import TimeFactors, day_of_week
from delivery_tracking.services.eta.filter import FilterState
from delivery_tracking.services.eta.history import HistoricalData
from delivery_tracking.utils.geo import GeoPoint
from delivery_tracking.utils.timeutils import to_iso

# Vitesse moyenne par mode (km/h) / Average speed per mode (km/h)
MODE_SPEEDS_KMH: dict[TransportMode, float] = {
    TransportMode.TRUCK: 35.0,
    TransportMode.VAN: 40.0,
    TransportMode.PICKUP: 45.0,
    TransportMode.MOTORBIKE: 50.0,
    TransportMode.BICYCLE: 15.0,
}

CITY_SPEED_KMH = 30.0
MIN_FILTER_VELOCITY_KMH = 5.0


@dataclass
class PredictionContext:
    """Entrees communes aux modeles / Inputs shared by all models."""
    origin: GeoPoint
    destination: GeoPoint
    mode: TransportMode
    departure: datetime
    distance_km: float
    time: TimeFactors
    weather_factor: float = 1.0
    traffic_density: float = 0.5
    history: HistoricalData = field(default_factory=HistoricalData)
    filter_state: FilterState | None = None

    @property
    def hour(self) -> int:
        return self.departure.hour

    @property
    def day_of_week(self) -> int:
        return day_of_week(self.departure)

    def arrival_at(self, duration_minutes: float) -> str:
        return to_iso(self.departure + timedelta(minutes=duration_minutes))


@dataclass
class ModelEstimate:
    model: str
    duration_minutes: float | None
    arrival_at: str | None
    average_speed_kmh: float | None
    confidence: float
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.duration_minutes is not None

    @classmethod
    def failed(cls, model: str, error: str) -> "ModelEstimate":
        return cls(model=model, duration_minutes=None, arrival_at=None, average_speed_kmh=None,
                   confidence=0.0, error=error)

    def as_dict(self) -> dict:
        return {
            "duration_minutes": round(self.duration_minutes, 2) if self.duration_minutes is not None else None,
            "arrival_at": self.arrival_at,
            "average_speed_kmh": round(self.average_speed_kmh, 2) if self.average_speed_kmh is not None else None,
            "confidence": self.confidence,
            "error": self.error,
        }


class Estimator(Protocol):
    name: str

    def estimate(self, context: PredictionContext) -> ModelEstimate:
        ...


def _from_speed(name: str, context: PredictionContext, speed_kmh: float, confidence: float) -> ModelEstimate:
    if not speed_kmh or speed_kmh <= 0 or not math.isfinite(speed_kmh):
        raise EstimatorError(f"{name}: invalid speed {speed_kmh}")
    duration = context.distance_km / speed_kmh * 60.0
    return ModelEstimate(
        model=name,
        duration_minutes=duration,
        arrival_at=context.arrival_at(duration),
        average_speed_kmh=speed_kmh,
        confidence=confidence,
    )


class BaselineEstimator:
    """Vitesse du mode x facteur horaire / Mode speed x time factor."""
    name = "baseline"
    confidence = 0.75

    def estimate(self, context: PredictionContext) -> ModelEstimate:
        speed = MODE_SPEEDS_KMH[context.mode] * context.time.combined_factor
        return _from_speed(self.name, context, speed, self.confidence)


class RegressionEstimator:
    """Moindres carres sur les trajets termines / Least squares over completed routes.

    Moins de `min_routes` trajets : delegue au modele de base.
    """
    name = "regression"
    min_routes = 5
    min_duration_minutes = 10.0

    def __init__(self, baseline: BaselineEstimator | None = None):
        self.baseline = baseline or BaselineEstimator()

    @staticmethod
    def features(distance_km, time_factor, weather_factor, density, hour, dow) -> list[float]:
        angle = 2 * math.pi * hour / 24
        return [1.0, distance_km, time_factor, weather_factor, density, math.sin(angle), math.cos(angle), dow / 7]

    def estimate(self, context: PredictionContext) -> ModelEstimate:
        routes = context.history.routes
        if len(routes) < self.min_routes:
            return replace(self.baseline.estimate(context), model=self.name)

        x = np.array([
            self.features(r.distance_km, r.time_factor, r.weather_factor, r.traffic_density,
                          r.hour_of_day, r.day_of_week)
            for r in routes
        ])
        y = np.array([r.actual_duration_minutes for r in routes])
        coef, *_ = np.linalg.lstsq(x, y, rcond=None)

        current = np.array(self.features(
            context.distance_km, context.time.combined_factor, context.weather_factor,
            context.traffic_density, context.hour, context.day_of_week,
        ))
        predicted = float(current @ coef)
        if not math.isfinite(predicted):
            raise EstimatorError("regression: non-finite prediction")

        duration = max(self.min_duration_minutes, predicted)
        return ModelEstimate(
            model=self.name,
            duration_minutes=duration,
            arrival_at=context.arrival_at(duration),
            average_speed_kmh=context.distance_km / max(1.0, duration / 60.0),
            confidence=self._confidence(x, y, coef),
        )

    @staticmethod
    def _confidence(x: np.ndarray, y: np.ndarray, coef: np.ndarray) -> float:
        """Confiance depuis R² / Confidence from R²."""
        residuals = y - x @ coef
        ss_res = float(np.sum(residuals ** 2))
        ss_tot = float(np.sum((y - y.mean()) ** 2))
        r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else (1.0 if ss_res < 1e-9 else 0.0)
        return round(max(0.3, min(0.95, 0.3 + 0.65 * max(0.0, r2))), 3)


class FilterEstimator:
    """Vitesse lissee par livraison, sinon profil ville / Smoothed per-delivery velocity, else city profile."""
    name = "filter"
    confidence = 0.85

    def estimate(self, context: PredictionContext) -> ModelEstimate:
        state = context.filter_state
        if state is not None and state.initialized and state.velocity_kmh >= MIN_FILTER_VELOCITY_KMH:
            speed = state.velocity_kmh
        else:
            speed = CITY_SPEED_KMH * context.time.combined_factor

        estimate = _from_speed(self.name, context, speed, self.confidence)
        speeds = context.history.speeds
        if speeds:
            # Variance historique des vitesses / Historical speed variance
            adjustment = 1 + float(np.var(speeds)) / 100
            estimate.duration_minutes *= adjustment
            estimate.arrival_at = context.arrival_at(estimate.duration_minutes)
        return estimate


@dataclass(frozen=True)
class PseudoMLWeights:
    """Poids fixes d'une couche cachee tanh (remplacables) / Fixed tanh hidden-layer weights (replaceable).

    Entrees normalisees : distance/500, facteur horaire - 1, facteur meteo - 1,
    sin(heure), cos(heure), jour/6, densite - 0.5.
    """
    hidden: tuple[tuple[float, ...], ...] = (
        (-0.20, 0.90, 0.70, 0.05, 0.00, 0.10, -0.60),
        (0.10, 0.40, 0.50, -0.10, 0.15, 0.00, -0.40),
        (-0.30, 0.20, 0.30, 0.00, -0.05, 0.20, -0.20),
        (0.05, 0.60, 0.20, 0.10, 0.10, -0.10, -0.30),
    )
    hidden_bias: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    output: tuple[float, ...] = (0.50, 0.30, 0.20, 0.40)
    max_adjustment: float = 0.3

    def adjustment(self, features: np.ndarray) -> float:
        hidden = np.tanh(np.array(self.hidden) @ features + np.array(self.hidden_bias))
        raw = float(np.array(self.output) @ hidden)
        return self.max_adjustment * math.tanh(raw)


class PseudoMLEstimator:
    """Ajustement borne de la vitesse du mode / Bounded adjustment of the mode speed."""
    name = "ml"
    confidence = 0.82

    def __init__(self, weights: PseudoMLWeights | None = None):
        self.weights = weights or PseudoMLWeights()

    @staticmethod
    def features(context: PredictionContext) -> np.ndarray:
        angle = 2 * math.pi * context.hour / 24
        return np.array([
            context.distance_km / 500.0,
            context.time.combined_factor - 1.0,
            context.weather_factor - 1.0,
            math.sin(angle),
            math.cos(angle),
            context.day_of_week / 6.0,
            context.traffic_density - 0.5,
        ])

    def estimate(self, context: PredictionContext) -> ModelEstimate:
        adjustment = self.weights.adjustment(self.features(context))
        speed = MODE_SPEEDS_KMH[context.mode] * (1 + adjustment)
        return _from_speed(self.name, context, max(1.0, speed), self.confidence)


def default_estimators() -> list[Estimator]:
    baseline = BaselineEstimator()
    return [RegressionEstimator(baseline), FilterEstimator(), PseudoMLEstimator(), baseline]
