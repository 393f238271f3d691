"""
Fournisseurs de distance routiere / Road distance providers.
Contrat : distance (et duree si connue) entre deux points.
Contract: distance (and duration when known) between two points.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from delivery_tracking.utils.geo import GeoPoint, road_distance_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_minutes: float | None = None
    source: str = "haversine"


class RoutingProvider(Protocol):
    async def route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate:
        ...


class HaversineRoutingProvider:
    """Hors ligne : Haversine x facteur routier / Offline: Haversine x road factor."""

    def __init__(self, road_factor: float = 1.3):
        self.road_factor = road_factor

    async def route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate:
        return RouteEstimate(distance_km=road_distance_km(origin, destination, self.road_factor))


# Table ville-a-ville (km) / City-pair table (km)
CITY_PAIR_DISTANCES_KM = {
    ("dhaka", "chittagong"): 244.0,
    ("dhaka", "sylhet"): 232.0,
    ("dhaka", "rajshahi"): 256.0,
    ("dhaka", "khulna"): 334.0,
    ("chittagong", "sylhet"): 195.0,
    ("rajshahi", "khulna"): 177.0,
}


class CityPairRoutingProvider:
    """Distances fixes entre villes, dans les deux sens / Fixed city-pair distances, both directions.

    Paire inconnue -> fournisseur de repli / Unknown pair -> fallback provider.
    """

    def __init__(
        self,
        distances: dict[tuple[str, str], float] | None = None,
        fallback: RoutingProvider | None = None,
    ):
        table = distances if distances is not None else CITY_PAIR_DISTANCES_KM
        self._distances = {frozenset((a.lower(), b.lower())): km for (a, b), km in table.items()}
        self.fallback = fallback or HaversineRoutingProvider()

    def lookup(self, origin_label: str | None, destination_label: str | None) -> float | None:
        if not origin_label or not destination_label:
            return None
        key = frozenset((origin_label.strip().lower(), destination_label.strip().lower()))
        return self._distances.get(key)

    async def route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate:
        distance = self.lookup(origin.label, destination.label)
        if distance is None:
            return await self.fallback.route(origin, destination)
        return RouteEstimate(distance_km=distance, source="city_pair")


class OSRMRoutingProvider:
    """Service OSRM /route via httpx, repli hors ligne sur toute erreur /
    OSRM /route service via httpx, offline fallback on any error."""

    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
        fallback: RoutingProvider | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self._client = client
        self.fallback = fallback or HaversineRoutingProvider()

    def _url(self, origin: GeoPoint, destination: GeoPoint) -> str:
        # OSRM attend lon,lat / OSRM expects lon,lat
        coords = f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        return f"{self.base_url}/route/v1/{self.profile}/{coords}"

    async def route(self, origin: GeoPoint, destination: GeoPoint) -> RouteEstimate:
        url = self._url(origin, destination)
        params = {"overview": "false"}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
            if data.get("code") != "Ok":
                raise ValueError(data.get("message", "OSRM error"))
            route = data["routes"][0]
            return RouteEstimate(
                distance_km=round(route["distance"] / 1000.0, 2),
                duration_minutes=round(route["duration"] / 60.0, 1),
                source="osrm",
            )
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("OSRM route failed (%s), using offline distance", exc)
            return await self.fallback.route(origin, destination)
