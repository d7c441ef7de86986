"""Models module - Pydantic data models"""

from .base import WireModel
from .chat import (
    MAX_HISTORY_MESSAGES,
    CancelStreamRequest,
    ChatHistoryItem,
    StreamEvent,
    StreamEventType,
    StreamRequest,
    trim_history,
)
from .settings import (
    CoachingStyle,
    PersonaMode,
    Provider,
    ResponseStyle,
    Settings,
    TokenUsage,
    UiPreferences,
)
from .tab_state import (
    CodeSnapshot,
    ProblemContext,
    SelectionRange,
    SiteId,
    SnapshotSource,
    TabState,
    coerce_snapshot,
    score_confidence,
)

__all__ = [
    "WireModel",
    # Chat models
    "MAX_HISTORY_MESSAGES",
    "CancelStreamRequest",
    "ChatHistoryItem",
    "StreamEvent",
    "StreamEventType",
    "StreamRequest",
    "trim_history",
    # Settings models
    "CoachingStyle",
    "PersonaMode",
    "Provider",
    "ResponseStyle",
    "Settings",
    "TokenUsage",
    "UiPreferences",
    # Tab state models
    "CodeSnapshot",
    "ProblemContext",
    "SelectionRange",
    "SiteId",
    "SnapshotSource",
    "TabState",
    "coerce_snapshot",
    "score_confidence",
]
