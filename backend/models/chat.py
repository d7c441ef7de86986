"""Chat history and stream channel data models"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import Field

from .base import WireModel
from .settings import PersonaMode
from .tab_state import CodeSnapshot, ProblemContext

MAX_HISTORY_MESSAGES = 30


def now_ms() -> int:
    return int(time.time() * 1000)


class ChatHistoryItem(WireModel):
    """One turn of the per-tab conversation"""

    role: Literal["user", "assistant"]
    content: str
    ts: int = Field(default_factory=now_ms)


def trim_history(history: list[ChatHistoryItem], limit: int = MAX_HISTORY_MESSAGES) -> list[ChatHistoryItem]:
    """Drop the oldest turns so at most `limit` remain"""
    if len(history) <= limit:
        return list(history)
    return history[len(history) - limit :]


class StreamRequest(WireModel):
    """SEND_CHAT_STREAM message from the UI"""

    type: Literal["SEND_CHAT_STREAM"] = "SEND_CHAT_STREAM"
    tab_id: int | None = None
    request_id: str = ""
    text: str = ""
    context: ProblemContext | None = None
    code_snapshot: dict[str, Any] | CodeSnapshot | None = None  # Blank captures are dropped later
    persona_mode: PersonaMode | None = None


class CancelStreamRequest(WireModel):
    """CANCEL_CHAT_STREAM message from the UI"""

    type: Literal["CANCEL_CHAT_STREAM"] = "CANCEL_CHAT_STREAM"
    tab_id: int | None = None
    request_id: str = ""


class StreamEventType(str, Enum):
    START = "STREAM_START"
    CHUNK = "STREAM_CHUNK"
    DONE = "STREAM_DONE"
    ERROR = "STREAM_ERROR"


TERMINAL_EVENTS = frozenset({StreamEventType.DONE, StreamEventType.ERROR})


class StreamEvent(WireModel):
    """Server to client event on the stream channel"""

    type: StreamEventType
    request_id: str | None = None
    chunk: str | None = None
    history: list[ChatHistoryItem] | None = None
    response: str | None = None
    error: str | None = None

    @classmethod
    def start(cls, request_id: str) -> "StreamEvent":
        return cls(type=StreamEventType.START, request_id=request_id)

    @classmethod
    def delta(cls, request_id: str, chunk: str) -> "StreamEvent":
        return cls(type=StreamEventType.CHUNK, request_id=request_id, chunk=chunk)

    @classmethod
    def done(cls, request_id: str, history: list[ChatHistoryItem], response: str) -> "StreamEvent":
        return cls(type=StreamEventType.DONE, request_id=request_id, history=history, response=response)

    @classmethod
    def failed(cls, request_id: str | None, error: str) -> "StreamEvent":
        return cls(type=StreamEventType.ERROR, request_id=request_id, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_wire(self) -> dict[str, Any]:
        # Each event type carries only its own fields.
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload.setdefault("requestId", self.request_id)
        return payload
