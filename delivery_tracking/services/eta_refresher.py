"""
Rafraichissement periodique des ETA / Periodic ETA refresh.
Tache de fond : ensemble complet pour chaque livraison active, concurrence bornee.
Background task: full ensemble for every active delivery, bounded concurrency.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delivery_tracking.config import settings
from delivery_tracking.database import async_session
from delivery_tracking.exceptions import TrackingError
from delivery_tracking.models.delivery import ACTIVE_STATUSES, Delivery
from delivery_tracking.services.locks import KeyedLocks, delivery_locks
from delivery_tracking.services.notifications import NotificationDispatcher
from delivery_tracking.services.tracking_service import TrackingService

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[AsyncSession], TrackingService]


class ETARefresher:
    """Re-prediction periodique des livraisons actives / Periodic re-prediction of active deliveries.

    Chaque livraison a sa propre session et son propre delai maximal ;
    une livraison lente ne bloque jamais les autres.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        interval_seconds: float | None = None,
        max_concurrency: int | None = None,
        timeout_seconds: float | None = None,
        notifier: NotificationDispatcher | None = None,
        locks: KeyedLocks | None = None,
        service_factory: ServiceFactory | None = None,
    ):
        self.session_factory = session_factory or async_session
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.ETA_REFRESH_INTERVAL_SECONDS
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.ETA_PREDICTION_TIMEOUT_SECONDS
        self.notifier = notifier or NotificationDispatcher()
        self.locks = locks if locks is not None else delivery_locks
        self.service_factory = service_factory or self._default_service
        self._semaphore = asyncio.Semaphore(
            max_concurrency if max_concurrency is not None else settings.ETA_REFRESH_MAX_CONCURRENCY
        )
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    def _default_service(self, session: AsyncSession) -> TrackingService:
        return TrackingService(session, notifier=self.notifier, locks=self.locks)

    async def active_delivery_ids(self) -> list[int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Delivery.id).where(Delivery.status.in_(ACTIVE_STATUSES)).order_by(Delivery.id)
            )
            return [row[0] for row in result.all()]

    async def refresh_one(self, delivery_id: int) -> bool:
        """Re-predire une livraison ; False si ignoree ou en echec / Re-predict one delivery; False if skipped or failed."""
        async with self._semaphore:
            async with self.session_factory() as session:
                service = self.service_factory(session)
                try:
                    prediction = await asyncio.wait_for(service.refresh_eta(delivery_id), self.timeout_seconds)
                except asyncio.TimeoutError:
                    logger.warning("ETA refresh for delivery %s timed out after %ss", delivery_id, self.timeout_seconds)
                    return False
                except TrackingError as exc:
                    logger.warning("ETA refresh for delivery %s failed: %s", delivery_id, exc.message)
                    return False
                except SQLAlchemyError:
                    logger.exception("ETA refresh for delivery %s failed (storage)", delivery_id)
                    return False
                except Exception:
                    logger.exception("ETA refresh for delivery %s failed", delivery_id)
                    return False
                return prediction is not None

    async def run_once(self) -> int:
        """Un passage complet, renvoie le nombre de predictions ecrites / One pass, returns predictions written."""
        delivery_ids = await self.active_delivery_ids()
        if not delivery_ids:
            return 0
        results = await asyncio.gather(*(self.refresh_one(delivery_id) for delivery_id in delivery_ids))
        refreshed = sum(1 for ok in results if ok)
        logger.debug("ETA refresh: %s/%s deliveries updated", refreshed, len(delivery_ids))
        return refreshed

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("ETA refresh pass failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop(), name="eta-refresher")
            logger.info("ETA refresher started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("ETA refresher stopped")
