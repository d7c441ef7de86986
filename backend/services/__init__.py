"""Services module - Business logic layer"""

from .app_config import AppConfig, load_app_config
from .config_manager import ConfigManager
from .container import AppServices, build_services, get_services
from .errors import AssistantError
from .llm_service import LLMService, default_completion_factory
from .message_bus import MessageBus
from .observer_hub import ObserverHub
from .session_manager import SessionManager, SessionRegistry
from .storage import JsonFileStore, MemoryStore
from .tab_state import HistoryStore, TabStateStore

__all__ = [
    "AppConfig",
    "load_app_config",
    "ConfigManager",
    "AppServices",
    "build_services",
    "get_services",
    "AssistantError",
    "LLMService",
    "default_completion_factory",
    "MessageBus",
    "ObserverHub",
    "SessionManager",
    "SessionRegistry",
    "JsonFileStore",
    "MemoryStore",
    "HistoryStore",
    "TabStateStore",
]
