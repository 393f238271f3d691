"""Routes API / API routes."""

from fastapi import APIRouter

from delivery_tracking.api import (
    deliveries,
    tracking,
)

api_router = APIRouter(prefix="/api")

api_router.include_router(deliveries.router, prefix="/deliveries", tags=["deliveries"])
api_router.include_router(tracking.router, prefix="/tracking", tags=["tracking"])
