"""Observer module - Tab-side capture, publishing and chat channel client"""

from .chat_client import ChatChannelClient, ChatPanelState
from .extraction import context_signature, extract_problem_context
from .page import LiveEditorState, PageQuery, PageSnapshot, SnapshotPage
from .pipeline import DEFAULT_PROBES, capture_code
from .publisher import ContextPublisher
from .runner import SnapshotFileSource, TabObserver

__all__ = [
    "ChatChannelClient",
    "ChatPanelState",
    "context_signature",
    "extract_problem_context",
    "LiveEditorState",
    "PageQuery",
    "PageSnapshot",
    "SnapshotPage",
    "DEFAULT_PROBES",
    "capture_code",
    "ContextPublisher",
    "SnapshotFileSource",
    "TabObserver",
]
