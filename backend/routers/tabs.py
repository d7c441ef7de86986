"""Control link between the coordinator and each tab observer"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from services.container import AppServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/tabs/{tab_id}")
async def observer_link(websocket: WebSocket, tab_id: int, services: AppServices = Depends(get_services)):
    """Forward rescans to the observer and collect its answers"""
    await websocket.accept()
    send_json = websocket.send_json
    services.observers.connect(tab_id, send_json)
    logger.info("[Tabs] Observer attached to tab %s", tab_id)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("[Tabs] Ignoring non-JSON frame from tab %s", tab_id)
                continue
            if isinstance(message, dict) and message.get("type") == "RESCAN_RESULT":
                services.observers.resolve(message)
            else:
                logger.info("[Tabs] Ignoring observer message for tab %s", tab_id)
    except WebSocketDisconnect:
        logger.info("[Tabs] Observer detached from tab %s", tab_id)
    finally:
        services.observers.disconnect(tab_id, send_json)
