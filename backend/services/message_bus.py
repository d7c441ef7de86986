"""
Message Bus - One-shot request/response dispatch

Every reply is `{"ok": True, ...payload}` or `{"ok": False, "error": message}`.
The sender's tab (when the caller is a tab observer) arrives out of band.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from models.bus import (
    BUS_REQUEST_TYPES,
    ClearChatHistory,
    CodeSnapshotUpdate,
    ContextUpdate,
    GetChatHistory,
    GetSenderTab,
    GetSettings,
    GetTabState,
    RescanContext,
    SaveSettings,
    TabClosed,
    parse_bus_request,
)
from models.tab_state import TabState, coerce_snapshot

from .config_manager import ConfigManager
from .errors import AssistantError, InvalidTab
from .observer_hub import ObserverHub
from .session_manager import SessionManager
from .tab_state import HistoryStore, TabStateStore

logger = logging.getLogger(__name__)


def describe_validation_error(error: ValidationError) -> str:
    """First validation problem as one readable line"""
    first = error.errors()[0] if error.errors() else None
    if first is None:
        return "Invalid message."
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "type")
    return f"Invalid message: {location}: {first.get('msg')}" if location else f"Invalid message: {first.get('msg')}"


class MessageBus:
    """Dispatch one-shot bus messages to the owning service"""

    def __init__(
        self,
        config_manager: ConfigManager,
        tab_states: TabStateStore,
        history: HistoryStore,
        sessions: SessionManager,
        observers: ObserverHub,
    ):
        self._config = config_manager
        self._tab_states = tab_states
        self._history = history
        self._sessions = sessions
        self._observers = observers

    async def dispatch(self, message: Any, sender_tab_id: Optional[int] = None) -> dict[str, Any]:
        message_type = message.get("type") if isinstance(message, dict) else None
        if message_type not in BUS_REQUEST_TYPES:
            logger.info("[MessageBus] Unknown message type: %s", message_type)
            return {"ok": False, "error": f"Unknown message type: {message_type}"}

        try:
            request = parse_bus_request(message)
            payload = await self._handle(request, sender_tab_id)
        except AssistantError as e:
            return {"ok": False, "error": e.message}
        except ValidationError as e:
            return {"ok": False, "error": describe_validation_error(e)}
        except Exception as e:
            logger.exception("[MessageBus] %s failed", message_type)
            return {"ok": False, "error": str(e) or e.__class__.__name__}
        return {"ok": True, **payload}

    async def _handle(self, request: Any, sender_tab_id: Optional[int]) -> dict[str, Any]:
        if isinstance(request, GetSettings):
            settings = await self._config.get_settings()
            return {"settings": settings.to_wire()}

        if isinstance(request, SaveSettings):
            settings = await self._config.save_settings(request.settings)
            return {"settings": settings.to_wire()}

        if isinstance(request, GetChatHistory):
            tab_id = self._require_tab(request.tab_id)
            history = await self._history.get(tab_id)
            return {"tabId": tab_id, "history": [item.to_wire() for item in history]}

        if isinstance(request, ClearChatHistory):
            tab_id = self._require_tab(request.tab_id)
            await self._history.clear(tab_id)
            return {"tabId": tab_id, "history": []}

        if isinstance(request, GetSenderTab):
            return {"tabId": sender_tab_id}

        if isinstance(request, GetTabState):
            tab_id = request.tab_id if request.tab_id is not None else sender_tab_id
            if tab_id is None:
                return {"tabId": None, "state": TabState().to_wire()}
            state = await self._tab_states.get(tab_id)
            return {"tabId": tab_id, "state": state.to_wire()}

        if isinstance(request, ContextUpdate):
            tab_id = self._require_tab(sender_tab_id, "Context update without tab.")
            state = await self._tab_states.merge(tab_id, {"context": request.context})
            return {"tabId": tab_id, "context": state.context.to_wire() if state.context else None}

        if isinstance(request, CodeSnapshotUpdate):
            tab_id = self._require_tab(sender_tab_id, "Code snapshot update without tab.")
            snapshot = coerce_snapshot(request.snapshot)
            if snapshot is None:
                # Blank captures never overwrite what the tab already has.
                state = await self._tab_states.get(tab_id)
            else:
                state = await self._tab_states.merge(tab_id, {"codeSnapshot": snapshot})
            return {"tabId": tab_id, "snapshot": state.code_snapshot.to_wire() if state.code_snapshot else None}

        if isinstance(request, RescanContext):
            tab_id = self._require_tab(
                request.tab_id if request.tab_id is not None else sender_tab_id,
                "No tab to rescan.",
            )
            context = await self._observers.request_rescan(tab_id)
            return {"tabId": tab_id, "context": context.to_wire() if context else None}

        if isinstance(request, TabClosed):
            tab_id = self._require_tab(request.tab_id)
            await self._sessions.close_tab(tab_id)
            return {"tabId": tab_id}

        raise AssistantError(f"Unknown message type: {getattr(request, 'type', None)}")

    @staticmethod
    def _require_tab(tab_id: Optional[int], message: Optional[str] = None) -> int:
        if tab_id is None:
            raise InvalidTab(message)
        return tab_id
