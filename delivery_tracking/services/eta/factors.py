"""
Facteurs de contexte ETA / ETA context factors: time of day, weather, traffic density.
Un facteur < 1 ralentit, > 1 accelere / A factor < 1 slows down, > 1 speeds up.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import httpx

from delivery_tracking.utils.geo import GeoPoint
from delivery_tracking.utils.timeutils import to_iso

logger = logging.getLogger(__name__)

# Facteurs horaires / Time-of-day traffic factors
TRAFFIC_FACTORS = {
    "rush_morning": 0.6,    # 07-09
    "rush_evening": 0.5,    # 17-19
    "business_hours": 0.8,  # 09-17
    "evening": 0.9,         # 19-22
    "night": 1.2,           # 22-07
    "weekend": 1.1,         # samedi-dimanche / Saturday-Sunday
}

WEATHER_FACTORS = {
    "clear": 1.0,
    "light_rain": 0.85,
    "heavy_rain": 0.65,
    "fog": 0.75,
    "storm": 0.5,
}

DEFAULT_WEATHER = "clear"

# Villes a fort trafic / High-traffic cities
HIGH_TRAFFIC_CITIES = frozenset({"dhaka", "chittagong", "sylhet"})
HIGH_TRAFFIC_DENSITY = 0.8
LOW_TRAFFIC_DENSITY = 0.4
DEFAULT_TRAFFIC_DENSITY = 0.5


@dataclass(frozen=True)
class TimeFactors:
    hour_factor: float
    day_factor: float
    combined_factor: float
    period: str

    def as_dict(self) -> dict:
        return {
            "hour_factor": self.hour_factor,
            "day_factor": self.day_factor,
            "combined_factor": self.combined_factor,
            "period": self.period,
        }


def day_of_week(at: datetime) -> int:
    """0 = dimanche ... 6 = samedi / 0 = Sunday ... 6 = Saturday."""
    return (at.weekday() + 1) % 7


def is_weekend(at: datetime) -> bool:
    return day_of_week(at) in (0, 6)


def time_factors(at: datetime) -> TimeFactors:
    """Facteurs trafic selon l'heure de depart / Traffic factors for a departure time.

    Bornes inclusives evaluees dans l'ordre : 9h tombe dans la pointe du matin,
    17h dans la pointe du soir.
    """
    hour = at.hour
    if 7 <= hour <= 9:
        period = "rush_morning"
    elif 17 <= hour <= 19:
        period = "rush_evening"
    elif 9 <= hour <= 17:
        period = "business_hours"
    elif 19 <= hour <= 22:
        period = "evening"
    else:
        period = "night"

    combined = TRAFFIC_FACTORS[period]
    weekend = is_weekend(at)
    if weekend:
        combined *= TRAFFIC_FACTORS["weekend"]

    return TimeFactors(
        hour_factor=0.8 if 7 <= hour <= 19 else 1.1,
        day_factor=TRAFFIC_FACTORS["weekend"] if weekend else 1.0,
        combined_factor=round(combined, 4),
        period=period,
    )


def traffic_density(origin_label: str | None, destination_label: str | None) -> float:
    """Densite moyenne origine / destination / Mean origin / destination traffic density."""
    def _density(label: str | None) -> float:
        if not label:
            return DEFAULT_TRAFFIC_DENSITY
        return HIGH_TRAFFIC_DENSITY if label.strip().lower() in HIGH_TRAFFIC_CITIES else LOW_TRAFFIC_DENSITY

    return (_density(origin_label) + _density(destination_label)) / 2


def weather_factor(condition: str | None) -> float:
    return WEATHER_FACTORS.get((condition or DEFAULT_WEATHER).lower(), 1.0)


# ─── Fournisseurs meteo / Weather providers ───

class WeatherProvider(Protocol):
    async def weather_factor(self, point: GeoPoint, at: datetime) -> float:
        ...


class StaticWeatherProvider:
    """Condition fixe (configuration) / Fixed configured condition."""

    def __init__(self, condition: str = DEFAULT_WEATHER):
        self.condition = condition

    async def weather_factor(self, point: GeoPoint, at: datetime) -> float:
        return weather_factor(self.condition)


class HttpWeatherProvider:
    """Service meteo HTTP, retombe sur `clear` en cas d'echec /
    HTTP weather service, falls back to `clear` on failure.

    Attend une reponse JSON {"condition": "light_rain"} / Expects {"condition": "light_rain"}.
    """

    def __init__(self, base_url: str, timeout: float = 2.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def weather_factor(self, point: GeoPoint, at: datetime) -> float:
        params = {"lat": point.latitude, "lon": point.longitude, "at": to_iso(at)}
        try:
            if self._client is not None:
                response = await self._client.get(self.base_url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            condition = response.json()["condition"]
            if not isinstance(condition, str):
                raise TypeError(f"unexpected weather condition {condition!r}")
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("weather lookup failed (%s), using %s", exc, DEFAULT_WEATHER)
            return WEATHER_FACTORS[DEFAULT_WEATHER]
        return weather_factor(condition)
