"""Ensemble de prediction ETA / ETA prediction ensemble."""

from delivery_tracking.services.eta.ensemble import (
    ConfidenceInterval,
    EnsembleResult,
    combine,
    confidence_interval,
    model_weights,
    quality_label,
    run_estimators,
)
from delivery_tracking.services.eta.estimators import (
    MODE_SPEEDS_KMH,
    BaselineEstimator,
    FilterEstimator,
    ModelEstimate,
    PredictionContext,
    PseudoMLEstimator,
    PseudoMLWeights,
    RegressionEstimator,
    default_estimators,
)
from delivery_tracking.services.eta.factors import (
    HttpWeatherProvider,
    StaticWeatherProvider,
    TimeFactors,
    time_factors,
    traffic_density,
)
from delivery_tracking.services.eta.filter import FilterState
from delivery_tracking.services.eta.history import HistoricalData, RouteHistory
from delivery_tracking.services.eta.routing import (
    CityPairRoutingProvider,
    HaversineRoutingProvider,
    OSRMRoutingProvider,
    RouteEstimate,
)
from delivery_tracking.services.eta.service import ETAPredictionService, prediction_to_dict

__all__ = [
    "ConfidenceInterval",
    "EnsembleResult",
    "combine",
    "confidence_interval",
    "model_weights",
    "quality_label",
    "run_estimators",
    "MODE_SPEEDS_KMH",
    "BaselineEstimator",
    "FilterEstimator",
    "ModelEstimate",
    "PredictionContext",
    "PseudoMLEstimator",
    "PseudoMLWeights",
    "RegressionEstimator",
    "default_estimators",
    "HttpWeatherProvider",
    "StaticWeatherProvider",
    "TimeFactors",
    "time_factors",
    "traffic_density",
    "FilterState",
    "HistoricalData",
    "RouteHistory",
    "CityPairRoutingProvider",
    "HaversineRoutingProvider",
    "OSRMRoutingProvider",
    "RouteEstimate",
    "ETAPredictionService",
    "prediction_to_dict",
]
