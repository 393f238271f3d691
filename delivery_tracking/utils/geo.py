"""Utilitaires géographiques / Geographic utilities.

Fonctions pures, sans etat / Pure functions, no state.
"""

import math
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6371000.0
ROAD_DISTANCE_FACTOR = 1.3  # routes sinueuses / winding roads


@dataclass(frozen=True)
class GeoPoint:
    """Point lat/lon avec libelle optionnel (ville) / Lat/lon point with optional label (city)."""
    latitude: float
    longitude: float
    label: str | None = None


def validate_coordinates(latitude: float, longitude: float) -> bool:
    """Coordonnees dans les bornes / Coordinates within range."""
    if latitude is None or longitude is None:
        return False
    if math.isnan(latitude) or math.isnan(longitude):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Distance Haversine en metres / Haversine distance in meters."""
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(dlon / 2) ** 2
    )
    # min() protege asin contre les erreurs d'arrondi / min() guards asin against rounding
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def bearing_degrees(a: GeoPoint, b: GeoPoint) -> float:
    """Cap initial de a vers b, normalise dans [0, 360) / Initial bearing from a to b in [0, 360)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 donne 360.0 en cas extreme / -tiny % 360 can round up to 360.0
    return 0.0 if bearing >= 360.0 else bearing


@dataclass(frozen=True)
class GeoCircle:
    """Zone circulaire (centre + rayon) / Circular zone (center + radius)."""
    center: GeoPoint
    radius_meters: float


def is_inside_geofence(point: GeoPoint, geofence: GeoCircle) -> bool:
    """Point dans la zone, bord inclus / Point inside the zone, boundary included.

    Accepte tout objet avec `center` et `radius_meters` (GeoCircle, modele Geofence).
    Accepts any object with `center` and `radius_meters` (GeoCircle, Geofence model).
    """
    return distance_meters(point, geofence.center) <= geofence.radius_meters


def road_distance_km(a: GeoPoint, b: GeoPoint, factor: float = ROAD_DISTANCE_FACTOR) -> float:
    """
    Estimation de la distance routière / Estimate road distance.
    Haversine × facteur (1.3 par défaut).
    """
    return round(distance_meters(a, b) / 1000.0 * factor, 2)


def bounding_box(lat: float, lon: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    Boîte englobante autour d'un point / Bounding box around a point.
    Retourne (lat_min, lat_max, lon_min, lon_max).
    """
    delta_lat = radius_km / 111.0
    delta_lon = radius_km / (111.0 * max(math.cos(math.radians(lat)), 1e-6))
    return (lat - delta_lat, lat + delta_lat, lon - delta_lon, lon + delta_lon)
