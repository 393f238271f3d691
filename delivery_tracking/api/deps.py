"""
Dependances des routes / Route dependencies.
Injectees dans les routes via Depends().
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.api.ws_tracking import manager
from delivery_tracking.database import get_db
from delivery_tracking.exceptions import (
    DeliveryNotFoundError,
    IllegalTransitionError,
    LocationValidationError,
    StaleSampleError,
    StorageUnavailableError,
    TrackingError,
)
from delivery_tracking.services.locks import delivery_locks
from delivery_tracking.services.notifications import NotificationDispatcher
from delivery_tracking.services.tracking_query import TrackingQueryService
from delivery_tracking.services.tracking_service import TrackingService

# Delai conseille au client mobile / Retry delay advertised to the mobile client
RETRY_AFTER_SECONDS = 5


def get_notifier() -> NotificationDispatcher:
    """Notifications diffusees sur le WebSocket / Notifications broadcast over the WebSocket."""
    return NotificationDispatcher(manager.broadcast)


async def get_tracking_service(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> TrackingService:
    return TrackingService(db, notifier=notifier, locks=delivery_locks)


async def get_query_service(db: AsyncSession = Depends(get_db)) -> TrackingQueryService:
    return TrackingQueryService(db)


def http_error(exc: TrackingError) -> HTTPException:
    """Traduire une erreur du domaine en HTTPException / Translate a domain error into an HTTPException."""
    if isinstance(exc, DeliveryNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, (StaleSampleError, IllegalTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, LocationValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    if isinstance(exc, StorageUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=exc.message,
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
