"""
Combinaison des modeles ETA / ETA ensemble combination.
Moyenne ponderee, intervalle de confiance, niveau de qualite.
Weighted average, confidence interval, quality label.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from delivery_tracking.models.eta_prediction import PredictionQuality
from delivery_tracking.services.eta.estimators import Estimator, ModelEstimate, PredictionContext

logger = logging.getLogger(__name__)

FULL_WEIGHTS = {"regression": 0.35, "filter": 0.25, "ml": 0.25, "baseline": 0.15}
# Peu d'historique : favoriser le modele de base / Sparse history: favour the baseline
SPARSE_WEIGHTS = {"regression": 0.20, "filter": 0.25, "ml": 0.25, "baseline": 0.40}
MIN_HISTORY_ROUTES = 5

FALLBACK_DISTANCE_KM = 100.0
FALLBACK_SPEED_KMH = 40.0
FALLBACK_STD_RATIO = 0.2

Z_90 = 1.645
Z_95 = 1.96
MIN_LOWER_BOUND_MINUTES = 5.0
DISAGREEMENT_CV = 0.5
DEFAULT_ACCURACY = 0.8


@dataclass
class ConfidenceInterval:
    mean: float
    std_dev: float
    lower_90: float
    upper_90: float
    lower_95: float
    upper_95: float

    def as_dict(self) -> dict:
        return {
            "mean": self.mean,
            "std_dev": self.std_dev,
            "confidence_90": {"lower": self.lower_90, "upper": self.upper_90},
            "confidence_95": {"lower": self.lower_95, "upper": self.upper_95},
        }


@dataclass
class EnsembleResult:
    duration_minutes: float
    arrival_at: str
    average_speed_kmh: float
    distance_km: float
    interval: ConfidenceInterval
    quality: PredictionQuality
    breakdown: dict = field(default_factory=dict)
    weights: dict = field(default_factory=dict)
    error: str | None = None


def model_weights(history_count: int) -> dict[str, float]:
    return dict(FULL_WEIGHTS if history_count >= MIN_HISTORY_ROUTES else SPARSE_WEIGHTS)


def interval_from(mean: float, std_dev: float) -> ConfidenceInterval:
    """Bornes 90 / 95 % ; plancher 5 min sans jamais depasser la moyenne /
    90 / 95 % bounds; 5 min floor, never above the mean."""
    def _lower(z: float) -> float:
        return min(mean, max(MIN_LOWER_BOUND_MINUTES, mean - z * std_dev))

    return ConfidenceInterval(
        mean=round(mean, 2),
        std_dev=round(std_dev, 2),
        lower_90=round(_lower(Z_90), 2),
        upper_90=round(mean + Z_90 * std_dev, 2),
        lower_95=round(_lower(Z_95), 2),
        upper_95=round(mean + Z_95 * std_dev, 2),
    )


def confidence_interval(durations: list[float], accuracy: float | None = None) -> ConfidenceInterval:
    """Ecart-type des modeles divise par la precision historique /
    Inter-model std divided by historical accuracy."""
    values = np.array(durations, dtype=float)
    accuracy = accuracy if accuracy and accuracy > 0 else DEFAULT_ACCURACY
    return interval_from(float(values.mean()), float(values.std()) / accuracy)


def quality_label(route_count: int, accuracy: float, coefficient_of_variation: float = 0.0) -> PredictionQuality:
    if route_count >= 20 and accuracy >= 0.9:
        quality = PredictionQuality.HIGH
    elif route_count >= 10 and accuracy >= 0.8:
        quality = PredictionQuality.MEDIUM
    else:
        quality = PredictionQuality.LOW

    # Modeles tres divergents : un niveau de moins / Strong disagreement: one level down
    if coefficient_of_variation > DISAGREEMENT_CV:
        quality = {
            PredictionQuality.HIGH: PredictionQuality.MEDIUM,
            PredictionQuality.MEDIUM: PredictionQuality.LOW,
        }.get(quality, PredictionQuality.LOW)
    return quality


def run_estimators(estimators: list[Estimator], context: PredictionContext) -> list[ModelEstimate]:
    """Executer chaque modele ; un echec n'interrompt jamais l'ensemble /
    Run every model; a failure never aborts the ensemble."""
    estimates = []
    for estimator in estimators:
        try:
            estimate = estimator.estimate(context)
        except Exception as exc:
            logger.warning("ETA model %s failed: %s", estimator.name, exc)
            estimate = ModelEstimate.failed(estimator.name, str(exc) or exc.__class__.__name__)
        else:
            duration = estimate.duration_minutes
            if duration is not None and (not math.isfinite(duration) or duration < 0):
                estimate = ModelEstimate.failed(estimator.name, f"invalid duration {duration}")
        estimates.append(estimate)
    return estimates


def fallback(context: PredictionContext, error: str) -> EnsembleResult:
    """Prediction fixe quand tous les modeles echouent / Fixed prediction when every model fails."""
    duration = FALLBACK_DISTANCE_KM / FALLBACK_SPEED_KMH * 60.0
    logger.warning("ETA fallback used: %s", error)
    return EnsembleResult(
        duration_minutes=duration,
        arrival_at=context.arrival_at(duration),
        average_speed_kmh=FALLBACK_SPEED_KMH,
        distance_km=FALLBACK_DISTANCE_KM,
        interval=interval_from(duration, duration * FALLBACK_STD_RATIO),
        quality=PredictionQuality.LOW,
        breakdown={"fallback": {"duration_minutes": duration}},
        error=error,
    )


def combine(estimates: list[ModelEstimate], context: PredictionContext) -> EnsembleResult:
    """Moyenne ponderee normalisee sur les modeles valides / Weighted average normalised over valid models."""
    breakdown = {e.model: e.as_dict() for e in estimates}
    valid = [e for e in estimates if e.ok]
    if not valid:
        errors = "; ".join(f"{e.model}: {e.error}" for e in estimates) or "no estimators"
        result = fallback(context, f"all ETA models failed ({errors})")
        result.breakdown.update(breakdown)
        return result

    base_weights = model_weights(context.history.count)
    weights = {e.model: base_weights.get(e.model, 0.0) for e in valid}
    total = sum(weights.values())
    if total <= 0:
        weights = {e.model: 1.0 for e in valid}
        total = float(len(valid))
    weights = {model: w / total for model, w in weights.items()}

    duration = sum(e.duration_minutes * weights[e.model] for e in valid)
    speed = sum((e.average_speed_kmh or 0.0) * weights[e.model] for e in valid)
    for model, weight in weights.items():
        breakdown[model]["weight"] = round(weight, 4)

    durations = [e.duration_minutes for e in valid]
    accuracy = context.history.accuracy
    interval = confidence_interval(durations, accuracy)
    mean = float(np.mean(durations))
    cv = float(np.std(durations)) / mean if mean > 0 else 0.0

    return EnsembleResult(
        duration_minutes=duration,
        arrival_at=context.arrival_at(duration),
        average_speed_kmh=speed,
        distance_km=context.distance_km,
        interval=interval,
        quality=quality_label(context.history.count, accuracy, cv),
        breakdown=breakdown,
        weights=weights,
    )
