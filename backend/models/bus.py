"""One-shot bus request models"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from .base import WireModel
from .tab_state import ProblemContext


class GetSettings(WireModel):
    type: Literal["GET_SETTINGS"]


class SaveSettings(WireModel):
    type: Literal["SAVE_SETTINGS"]
    settings: dict[str, Any] = Field(default_factory=dict)


class GetChatHistory(WireModel):
    type: Literal["GET_CHAT_HISTORY"]
    tab_id: int | None = None


class ClearChatHistory(WireModel):
    type: Literal["CLEAR_CHAT_HISTORY"]
    tab_id: int | None = None


class GetTabState(WireModel):
    type: Literal["GET_TAB_STATE"]
    tab_id: int | None = None


class ContextUpdate(WireModel):
    type: Literal["CONTEXT_UPDATE"]
    context: ProblemContext | None = None


class CodeSnapshotUpdate(WireModel):
    type: Literal["CODE_SNAPSHOT_UPDATE"]
    snapshot: dict[str, Any] | None = None  # Validated after blank captures are dropped


class RescanContext(WireModel):
    type: Literal["RESCAN_CONTEXT"]
    tab_id: int | None = None


class GetSenderTab(WireModel):
    type: Literal["GET_SENDER_TAB"]


class TabClosed(WireModel):
    type: Literal["TAB_CLOSED"]
    tab_id: int | None = None


BusRequest = Annotated[
    Union[
        GetSettings,
        SaveSettings,
        GetChatHistory,
        ClearChatHistory,
        GetTabState,
        ContextUpdate,
        CodeSnapshotUpdate,
        RescanContext,
        GetSenderTab,
        TabClosed,
    ],
    Field(discriminator="type"),
]

_bus_request_adapter: TypeAdapter[Any] = TypeAdapter(BusRequest)

BUS_REQUEST_TYPES = frozenset(
    {
        "GET_SETTINGS",
        "SAVE_SETTINGS",
        "GET_CHAT_HISTORY",
        "CLEAR_CHAT_HISTORY",
        "GET_TAB_STATE",
        "CONTEXT_UPDATE",
        "CODE_SNAPSHOT_UPDATE",
        "RESCAN_CONTEXT",
        "GET_SENDER_TAB",
        "TAB_CLOSED",
    }
)


def parse_bus_request(data: Any) -> Any:
    """Validate a raw bus message into its request model"""
    return _bus_request_adapter.validate_python(data)
