"""
Service container - Everything the routers need, built once per app
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from starlette.requests import HTTPConnection

from .app_config import AppConfig
from .config_manager import ConfigManager
from .llm_service import CompletionFactory, default_completion_factory
from .message_bus import MessageBus
from .observer_hub import ObserverHub
from .session_manager import SessionManager, SessionRegistry
from .storage import JsonFileStore, KeyValueStore, MemoryStore
from .tab_state import HistoryStore, TabStateStore

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    config: AppConfig
    store: KeyValueStore
    config_manager: ConfigManager
    tab_states: TabStateStore
    history: HistoryStore
    registry: SessionRegistry
    sessions: SessionManager
    observers: ObserverHub
    bus: MessageBus
    completion_factory: CompletionFactory


def build_store(config: AppConfig) -> KeyValueStore:
    if config.store == "memory":
        logger.info("[Services] Using in-memory store")
        return MemoryStore()
    logger.info("[Services] Using store file %s", config.store_file)
    return JsonFileStore(config.store_file)


def build_services(
    config: AppConfig,
    store: Optional[KeyValueStore] = None,
    completion_factory: Optional[CompletionFactory] = None,
) -> AppServices:
    """Wire the services together; tests pass their own store and completions"""
    store = store if store is not None else build_store(config)
    completion_factory = completion_factory or default_completion_factory(config.provider_timeout)

    config_manager = ConfigManager(store)
    tab_states = TabStateStore(store)
    history = HistoryStore(store)
    registry = SessionRegistry()
    sessions = SessionManager(config_manager, tab_states, history, registry, completion_factory)
    observers = ObserverHub(timeout_seconds=config.rescan_timeout)
    bus = MessageBus(config_manager, tab_states, history, sessions, observers)

    return AppServices(
        config=config,
        store=store,
        config_manager=config_manager,
        tab_states=tab_states,
        history=history,
        registry=registry,
        sessions=sessions,
        observers=observers,
        bus=bus,
        completion_factory=completion_factory,
    )


def get_services(connection: HTTPConnection) -> AppServices:
    """FastAPI dependency for both HTTP routes and WebSockets"""
    return connection.app.state.services
