"""WebSocket temps reel pour le suivi des livraisons / Real-time WebSocket for delivery tracking."""

import json
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


class TrackingConnectionManager:
    """Gestionnaire de connexions WebSocket / WebSocket connection manager.

    Un client peut suivre une seule livraison ou toutes (delivery_id=None).
    A client may follow a single delivery or all of them (delivery_id=None).
    """

    def __init__(self):
        self.active_connections: dict[WebSocket, int | None] = {}

    async def connect(self, websocket: WebSocket, delivery_id: int | None = None):
        await websocket.accept()
        self.active_connections[websocket] = delivery_id

    def disconnect(self, websocket: WebSocket):
        self.active_connections.pop(websocket, None)

    async def broadcast(self, message: dict):
        """Envoyer aux clients abonnes / Send to subscribed clients."""
        data = json.dumps(message, ensure_ascii=False)
        target = message.get("delivery_id")
        disconnected = []
        for connection, delivery_id in list(self.active_connections.items()):
            if delivery_id is not None and delivery_id != target:
                continue
            try:
                await connection.send_text(data)
            except Exception:
                disconnected.append(connection)
        for conn in disconnected:
            self.disconnect(conn)
        if disconnected:
            logger.debug("%s websocket client(s) dropped", len(disconnected))

    async def send_personal(self, websocket: WebSocket, message: dict):
        await websocket.send_text(json.dumps(message, ensure_ascii=False))


# Singleton global / Global singleton
manager = TrackingConnectionManager()


@router.websocket("/ws/tracking")
async def websocket_tracking(
    websocket: WebSocket,
    delivery_id: int | None = Query(default=None),
):
    """Flux d'evenements de suivi / Tracking event stream.

    Types de messages : location_update, geofence_enter, geofence_exit, arrival,
    status_change, alert, eta_update
    """
    await manager.connect(websocket, delivery_id)
    await manager.send_personal(websocket, {"type": "subscribed", "delivery_id": delivery_id})
    try:
        while True:
            # Garder la connexion ouverte, recevoir pings / Keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
