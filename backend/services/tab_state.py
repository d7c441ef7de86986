"""
Tab State - Per-tab context/code snapshots and chat history in the store
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from models.chat import MAX_HISTORY_MESSAGES, ChatHistoryItem, trim_history
from models.tab_state import TabState

from .storage import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_PREFIX = "coach:history:"
TAB_STATE_PREFIX = "coach:tab-state:"

_TAB_STATE_FIELDS = ("context", "codeSnapshot")


def history_key(tab_id: int) -> str:
    return f"{HISTORY_PREFIX}{tab_id}"


def tab_state_key(tab_id: int) -> str:
    return f"{TAB_STATE_PREFIX}{tab_id}"


class TabStateStore:
    """Last-writer-wins store of each tab's context and code snapshot"""

    def __init__(self, store: KeyValueStore):
        self._store = store

    async def get(self, tab_id: int) -> TabState:
        return TabState.from_stored(await self._store.get(tab_state_key(tab_id)))

    async def merge(self, tab_id: int, patch: dict[str, Any]) -> TabState:
        """Replace only the fields present in `patch`; no locking"""
        current = (await self.get(tab_id)).to_wire()
        for field in _TAB_STATE_FIELDS:
            if field in patch:
                value = patch[field]
                current[field] = value.to_wire() if hasattr(value, "to_wire") else value
        state = TabState.model_validate(current)
        await self._store.set(tab_state_key(tab_id), state.to_wire())
        return state

    async def clear(self, tab_id: int) -> None:
        await self._store.remove(tab_state_key(tab_id))


class HistoryStore:
    """Per-tab chat history with an atomic append-and-cap primitive"""

    def __init__(self, store: KeyValueStore, limit: int = MAX_HISTORY_MESSAGES):
        self._store = store
        self._limit = limit
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock(self, tab_id: int) -> asyncio.Lock:
        lock = self._locks.get(tab_id)
        if lock is None:
            lock = self._locks[tab_id] = asyncio.Lock()
        return lock

    async def get(self, tab_id: int) -> list[ChatHistoryItem]:
        raw = await self._store.get(history_key(tab_id), [])
        if not isinstance(raw, list):
            return []
        items = []
        for entry in raw:
            try:
                items.append(ChatHistoryItem.model_validate(entry))
            except ValidationError:
                logger.warning("[HistoryStore] Skipping malformed history entry for tab %s", tab_id)
        return items

    async def append_exchange(
        self,
        tab_id: int,
        user: ChatHistoryItem,
        assistant: ChatHistoryItem,
    ) -> list[ChatHistoryItem]:
        """Read, append both turns, truncate and write as one unit per tab"""
        async with self._lock(tab_id):
            history = trim_history([*await self.get(tab_id), user, assistant], self._limit)
            await self._store.set(history_key(tab_id), [item.to_wire() for item in history])
            return history

    async def clear(self, tab_id: int) -> None:
        async with self._lock(tab_id):
            await self._store.remove(history_key(tab_id))

    def forget(self, tab_id: int) -> None:
        """Drop the tab's lock once nothing holds it"""
        lock = self._locks.get(tab_id)
        if lock is not None and not lock.locked():
            del self._locks[tab_id]
