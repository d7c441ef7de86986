"""Routers module - FastAPI route handlers"""

from . import bus, chat, config, tabs

__all__ = ["bus", "chat", "config", "tabs"]
