"""
Chat panel client - UI-side channel rules

`ChatPanelState` is the panel's reducer: it tracks at most one in-flight request
and drops events addressed to any other. `ChatChannelClient` carries requests
and events over the coordinator's /ws/chat socket.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, AsyncIterator, Optional

import aiohttp
from pydantic import ValidationError

from models.chat import (
    CancelStreamRequest,
    ChatHistoryItem,
    StreamEvent,
    StreamEventType,
    StreamRequest,
    now_ms,
)
from models.settings import PersonaMode
from models.tab_state import CodeSnapshot, ProblemContext

from .bus_client import DEFAULT_BASE_URL, to_ws_url

logger = logging.getLogger(__name__)


def create_request_id() -> str:
    return f"{now_ms()}-{secrets.token_hex(6)}"


class ChatPanelState:
    """Conversation as the panel shows it, including the streaming turn"""

    def __init__(self, tab_id: Optional[int], history: Optional[list[ChatHistoryItem]] = None):
        self.tab_id = tab_id
        self.history: list[ChatHistoryItem] = list(history or [])
        self.request_id: Optional[str] = None
        self.sending = False
        self.status_text = "Ready"
        self.status_type = "ok"

    def begin(
        self,
        text: str,
        context: Optional[ProblemContext] = None,
        code_snapshot: Optional[CodeSnapshot] = None,
        persona_mode: Optional[PersonaMode] = None,
    ) -> Optional[StreamRequest]:
        """Start a turn; None when there is nothing to send or a turn is live"""
        if not text.strip() or self.sending or not self.tab_id:
            return None

        self.sending = True
        self.request_id = create_request_id()
        self.history = [
            *self.history,
            ChatHistoryItem(role="user", content=text),
            ChatHistoryItem(role="assistant", content=""),
        ]
        self.status_text = "Sending..."
        self.status_type = "warn"
        return StreamRequest(
            tab_id=self.tab_id,
            request_id=self.request_id,
            text=text,
            context=context,
            code_snapshot=code_snapshot,
            persona_mode=persona_mode,
        )

    def cancel_request(self) -> Optional[CancelStreamRequest]:
        if not self.request_id or not self.tab_id:
            return None
        return CancelStreamRequest(tab_id=self.tab_id, request_id=self.request_id)

    def apply(self, event: StreamEvent) -> bool:
        """Fold one event into the panel; returns False when it was discarded"""
        if not self.request_id or event.request_id != self.request_id:
            return False

        if event.type == StreamEventType.START:
            self.status_text = "Streaming..."
            self.status_type = "ok"
        elif event.type == StreamEventType.CHUNK:
            last = self.history[-1] if self.history else None
            if last is not None and last.role == "assistant":
                self.history[-1] = last.model_copy(update={"content": last.content + (event.chunk or "")})
        elif event.type == StreamEventType.DONE:
            self.history = list(event.history or [])
            self._finish("Ready", "ok")
        elif event.type == StreamEventType.ERROR:
            last = self.history[-1] if self.history else None
            if last is not None and last.role == "assistant" and last.content == "":
                self.history = self.history[:-1]
            self._finish(f"Error: {event.error}", "error")
        return True

    def _finish(self, status_text: str, status_type: str) -> None:
        self.sending = False
        self.request_id = None
        self.status_text = status_text
        self.status_type = status_type


class ChatChannelClient:
    """One /ws/chat connection, reused across sequential turns"""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, session: Optional[aiohttp.ClientSession] = None):
        self.url = to_ws_url(base_url, "/ws/chat")
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def __aenter__(self) -> "ChatChannelClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url, heartbeat=30)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def ws(self) -> aiohttp.ClientWebSocketResponse:
        if self._ws is None:
            raise RuntimeError("Chat channel is not connected")
        return self._ws

    async def send(self, request: StreamRequest | CancelStreamRequest) -> None:
        await self.ws.send_json(request.to_wire())

    async def events(self) -> AsyncIterator[StreamEvent]:
        async for message in self.ws:
            if message.type != aiohttp.WSMsgType.TEXT:
                if message.type == aiohttp.WSMsgType.ERROR:
                    break
                continue
            try:
                yield StreamEvent.model_validate_json(message.data)
            except ValidationError as e:
                logger.warning("[ChatClient] Dropping malformed event: %s", e)

    async def run_turn(self, panel: ChatPanelState, text: str, **hints: Any) -> AsyncIterator[StreamEvent]:
        """Send one turn and yield the accepted events until its terminal event"""
        request = panel.begin(text, **hints)
        if request is None:
            return
        await self.send(request)
        async for event in self.events():
            if not panel.apply(event):
                continue
            yield event
            if event.is_terminal:
                return
