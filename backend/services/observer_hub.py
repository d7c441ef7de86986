"""
Observer Hub - Control links to the tab observers

Each tab observer keeps a WebSocket open on /ws/tabs/{tab_id}. The hub forwards
RESCAN_CONTEXT over it and waits for the matching RESCAN_RESULT.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from models.tab_state import ProblemContext

from .errors import InvalidTab, ObserverTimeout

logger = logging.getLogger(__name__)

SendJson = Callable[[dict[str, Any]], Awaitable[None]]


class ObserverHub:
    """Registry of connected observers and their pending rescan commands"""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._links: dict[int, SendJson] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def connect(self, tab_id: int, send_json: SendJson) -> None:
        if tab_id in self._links:
            logger.info("[ObserverHub] Replacing observer link for tab %s", tab_id)
        self._links[tab_id] = send_json

    def disconnect(self, tab_id: int, send_json: Optional[SendJson] = None) -> None:
        # A reloaded page may have reconnected before the old socket closed.
        if send_json is not None and self._links.get(tab_id) is not send_json:
            return
        self._links.pop(tab_id, None)

    async def request_rescan(self, tab_id: Optional[int], timeout: Optional[float] = None) -> Optional[ProblemContext]:
        """Ask the tab's observer for a forced context publish and return its result"""
        if tab_id is None:
            raise InvalidTab()
        send_json = self._links.get(tab_id)
        if send_json is None:
            raise InvalidTab(f"No observer is attached to tab {tab_id}.")

        command_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[command_id] = future
        try:
            await send_json({"type": "RESCAN_CONTEXT", "commandId": command_id})
            return await asyncio.wait_for(future, timeout or self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("[ObserverHub] Rescan timed out for tab %s", tab_id)
            raise ObserverTimeout() from e
        finally:
            self._pending.pop(command_id, None)

    def resolve(self, message: dict[str, Any]) -> bool:
        """Settle the pending rescan named by a RESCAN_RESULT message"""
        future = self._pending.get(str(message.get("commandId") or ""))
        if future is None or future.done():
            return False
        raw_context = message.get("context")
        try:
            context = ProblemContext.model_validate(raw_context) if raw_context else None
        except ValidationError as e:
            future.set_exception(e)
            return True
        future.set_result(context)
        return True
