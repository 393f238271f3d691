"""Historique des trajets termines / Completed route history."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.config import settings
from delivery_tracking.models.completed_route import CompletedRoute
from delivery_tracking.models.delivery import TransportMode
from delivery_tracking.utils.geo import GeoPoint, bounding_box
from delivery_tracking.utils.timeutils import to_iso

logger = logging.getLogger(__name__)


@dataclass
class HistoricalData:
    routes: list[CompletedRoute] = field(default_factory=list)
    accuracy: float = 0.8
    matched_by: str = "none"

    @property
    def count(self) -> int:
        return len(self.routes)

    @property
    def speeds(self) -> list[float]:
        return [r.average_speed_kmh for r in self.routes if r.average_speed_kmh is not None]


def historical_accuracy(routes: list[CompletedRoute], default: float = 0.8) -> float:
    """1 - erreur relative moyenne / 1 - mean relative error."""
    errors = [
        abs(r.actual_duration_minutes - r.predicted_duration_minutes) / r.predicted_duration_minutes
        for r in routes
        if r.predicted_duration_minutes
    ]
    if not errors:
        return default
    return max(0.0, min(1.0, 1 - sum(errors) / len(errors)))


class RouteHistory:
    """Recherche des trajets comparables / Lookup of comparable routes."""

    def __init__(
        self,
        db: AsyncSession,
        lookback_days: int | None = None,
        max_routes: int | None = None,
        nearby_radius_km: float | None = None,
        default_accuracy: float | None = None,
    ):
        self.db = db
        self.lookback_days = lookback_days if lookback_days is not None else settings.HISTORY_LOOKBACK_DAYS
        self.max_routes = max_routes if max_routes is not None else settings.HISTORY_MAX_ROUTES
        self.nearby_radius_km = nearby_radius_km if nearby_radius_km is not None else settings.HISTORY_NEARBY_RADIUS_KM
        self.default_accuracy = (
            default_accuracy if default_accuracy is not None else settings.DEFAULT_HISTORICAL_ACCURACY
        )

    async def for_route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: TransportMode,
        now: datetime,
    ) -> HistoricalData:
        """Meme paire de villes (deux sens), sinon trajets proches /
        Same city pair (both directions), else nearby routes."""
        base = select(CompletedRoute).where(
            CompletedRoute.transport_mode == mode,
            CompletedRoute.completed_at >= to_iso(now - timedelta(days=self.lookback_days)),
        )

        routes: list[CompletedRoute] = []
        matched_by = "none"
        if origin.label and destination.label:
            a, b = origin.label.strip().lower(), destination.label.strip().lower()
            o, d = func.lower(CompletedRoute.origin_label), func.lower(CompletedRoute.destination_label)
            routes = await self._fetch(base.where(or_(and_(o == a, d == b), and_(o == b, d == a))))
            matched_by = "label" if routes else matched_by

        if not routes:
            routes = await self._fetch(base.where(or_(
                and_(self._near(CompletedRoute.origin_latitude, CompletedRoute.origin_longitude, origin),
                     self._near(CompletedRoute.destination_latitude, CompletedRoute.destination_longitude, destination)),
                and_(self._near(CompletedRoute.origin_latitude, CompletedRoute.origin_longitude, destination),
                     self._near(CompletedRoute.destination_latitude, CompletedRoute.destination_longitude, origin)),
            )))
            matched_by = "nearby" if routes else matched_by

        return HistoricalData(
            routes=routes,
            accuracy=historical_accuracy(routes, self.default_accuracy),
            matched_by=matched_by,
        )

    def _near(self, lat_col, lon_col, point: GeoPoint):
        lat_min, lat_max, lon_min, lon_max = bounding_box(point.latitude, point.longitude, self.nearby_radius_km)
        return and_(lat_col.between(lat_min, lat_max), lon_col.between(lon_min, lon_max))

    async def _fetch(self, query) -> list[CompletedRoute]:
        result = await self.db.execute(
            query.order_by(CompletedRoute.completed_at.desc()).limit(self.max_routes)
        )
        return list(result.scalars().all())
