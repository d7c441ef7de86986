"""Streaming chat channel: WebSocket, plus SSE for clients without sockets"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from models.chat import CancelStreamRequest, StreamEvent, StreamRequest
from services.container import AppServices, get_services
from services.message_bus import describe_validation_error

logger = logging.getLogger(__name__)

router = APIRouter()
ws_router = APIRouter()


class WebSocketSink:
    """Event sink over one channel socket; events after a disconnect are dropped"""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._lock = asyncio.Lock()
        self.closed = False

    async def send(self, event: StreamEvent) -> None:
        if self.closed:
            return
        async with self._lock:
            try:
                await self._websocket.send_json(event.to_wire())
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                # Tab reloaded mid-session; the session still runs to completion.
                self.closed = True
                logger.info("[Chat] Channel gone, dropping %s: %s", event.type.value, e)


class QueueSink:
    """Event sink feeding one SSE response"""

    def __init__(self):
        self.queue: asyncio.Queue[StreamEvent] = asyncio.Queue()

    async def send(self, event: StreamEvent) -> None:
        await self.queue.put(event)


def _request_id_of(data: Any) -> str | None:
    if isinstance(data, dict) and isinstance(data.get("requestId"), str):
        return data["requestId"] or None
    return None


async def handle_channel_message(services: AppServices, data: Any, sink: WebSocketSink) -> None:
    """Route one client message; a send never blocks the receive loop"""
    message_type = data.get("type") if isinstance(data, dict) else None

    if message_type == "SEND_CHAT_STREAM":
        try:
            request = StreamRequest.model_validate(data)
        except ValidationError as e:
            await sink.send(StreamEvent.failed(_request_id_of(data), describe_validation_error(e)))
            return
        services.sessions.launch(request, sink)
    elif message_type == "CANCEL_CHAT_STREAM":
        try:
            cancel = CancelStreamRequest.model_validate(data)
        except ValidationError as e:
            await sink.send(StreamEvent.failed(_request_id_of(data), describe_validation_error(e)))
            return
        services.sessions.cancel(cancel.tab_id, cancel.request_id)
    else:
        logger.info("[Chat] Ignoring channel message of type %s", message_type)


@ws_router.websocket("/ws/chat")
async def chat_channel(websocket: WebSocket, services: AppServices = Depends(get_services)):
    """Bidirectional stream channel, reused across sequential sessions"""
    await websocket.accept()
    sink = WebSocketSink(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                await sink.send(StreamEvent.failed(None, "Invalid message: not JSON"))
                continue
            await handle_channel_message(services, data, sink)
    except WebSocketDisconnect:
        logger.info("[Chat] Channel disconnected")
    finally:
        sink.closed = True


@router.post("/stream")
async def chat_stream(request: StreamRequest, services: AppServices = Depends(get_services)):
    """Run one session and stream its events (SSE)"""
    sink = QueueSink()
    services.sessions.launch(request, sink)

    async def event_generator():
        while True:
            event = await sink.queue.get()
            yield {"event": "message", "data": json.dumps(event.to_wire())}
            if event.is_terminal:
                break

    return EventSourceResponse(event_generator())


@router.post("/cancel")
async def chat_cancel(request: CancelStreamRequest, services: AppServices = Depends(get_services)) -> dict[str, Any]:
    """Cancel a live session; unknown sessions are ignored"""
    canceled = services.sessions.cancel(request.tab_id, request.request_id)
    return {"ok": True, "canceled": canceled}
