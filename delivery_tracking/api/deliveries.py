"""Routes Livraisons / Delivery routes."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracking.api.deps import get_tracking_service, http_error
from delivery_tracking.database import get_db
from delivery_tracking.exceptions import TrackingError
from delivery_tracking.models.delivery import Delivery
from delivery_tracking.models.status_transition import StatusTransition
from delivery_tracking.schemas.delivery import (
    DeliveryCreate,
    DeliveryCreated,
    DeliveryRead,
    DeliveryReport,
    StatusChange,
    StatusTransitionRead,
)
from delivery_tracking.services.eta.service import prediction_to_dict
from delivery_tracking.services.tracking_service import TrackingService

router = APIRouter()


@router.post("/", response_model=DeliveryCreated, status_code=201)
async def create_delivery(
    data: DeliveryCreate,
    service: TrackingService = Depends(get_tracking_service),
):
    """Enregistrer une livraison et initialiser le suivi / Register a delivery and initialise tracking."""
    try:
        delivery, prediction = await service.initialize(data)
    except TrackingError as exc:
        raise http_error(exc) from exc
    return DeliveryCreated(
        **DeliveryRead.model_validate(delivery).model_dump(),
        eta=prediction_to_dict(prediction),
    )


@router.get("/{delivery_id}", response_model=DeliveryRead)
async def get_delivery(delivery_id: int, db: AsyncSession = Depends(get_db)):
    delivery = await db.get(Delivery, delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return delivery


@router.put("/{delivery_id}/status", response_model=StatusTransitionRead)
async def change_status(
    delivery_id: int,
    data: StatusChange,
    service: TrackingService = Depends(get_tracking_service),
):
    """Changer le statut (operateur / chauffeur) / Change status (operator / courier).

    Une transition refusee reste tracee et renvoie 409.
    A rejected transition stays on record and returns 409.
    """
    try:
        return await service.change_status(delivery_id, data.status, data.reason)
    except TrackingError as exc:
        raise http_error(exc) from exc


@router.post("/{delivery_id}/complete", response_model=DeliveryReport)
async def complete_delivery(
    delivery_id: int,
    service: TrackingService = Depends(get_tracking_service),
):
    """Confirmer la livraison, rapport final / Confirm delivery, final report."""
    try:
        return await service.complete_delivery(delivery_id)
    except TrackingError as exc:
        raise http_error(exc) from exc


@router.get("/{delivery_id}/transitions", response_model=list[StatusTransitionRead])
async def list_transitions(delivery_id: int, db: AsyncSession = Depends(get_db)):
    """Historique des transitions, refusees comprises / Transition log, rejected ones included."""
    if not await db.get(Delivery, delivery_id):
        raise HTTPException(status_code=404, detail="Delivery not found")
    result = await db.execute(
        select(StatusTransition)
        .where(StatusTransition.delivery_id == delivery_id)
        .order_by(StatusTransition.created_at, StatusTransition.id)
    )
    return result.scalars().all()
