"""
Configuration Manager - Settings persistence with replace-and-normalize writes
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from models.settings import CoachingStyle, Settings, TokenUsage, UiPreferences

from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "coach:settings"


def mask_key(key: str) -> str:
    """Mask an API key for display"""
    if not key:
        return ""
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * (len(key) - 8) + key[-4:]


def to_wire_keys(model: type[BaseModel], partial: dict[str, Any]) -> dict[str, Any]:
    """Rename field-name keys to their camelCase alias before merging over wire data"""
    fields = model.model_fields
    return {(fields[key].alias or key) if key in fields else key: value for key, value in partial.items()}


class ConfigManager:
    """Read and write the process-wide Settings"""

    def __init__(self, store: KeyValueStore):
        self._store = store

    async def _load_raw(self) -> dict[str, Any]:
        saved = await self._store.get(SETTINGS_KEY, {})
        if not isinstance(saved, dict):
            logger.warning("[ConfigManager] Discarding malformed settings entry")
            return {}
        return saved

    async def get_settings(self) -> Settings:
        """Get current settings, defaults filled in"""
        saved = await self._load_raw()
        if "coachingStyle" not in saved and saved.get("strictInterviewer") is False:
            saved["coachingStyle"] = CoachingStyle.COLLABORATIVE.value
        return Settings.model_validate(saved)

    async def save_settings(self, partial: dict[str, Any]) -> Settings:
        """Merge a partial update over current settings, normalize and persist"""
        current = (await self.get_settings()).to_wire()
        partial = to_wire_keys(Settings, partial or {})
        merged = {**current, **partial}
        if isinstance(partial.get("ui"), dict):
            merged["ui"] = {**current["ui"], **to_wire_keys(UiPreferences, partial["ui"])}
        if isinstance(partial.get("tokenCounter"), dict):
            merged["tokenCounter"] = {**current["tokenCounter"], **to_wire_keys(TokenUsage, partial["tokenCounter"])}

        settings = Settings.model_validate(merged)
        await self._store.set(SETTINGS_KEY, settings.to_wire())
        logger.info(
            "[ConfigManager] Settings saved (provider=%s, model=%s)",
            settings.provider.value,
            settings.model,
        )
        return settings

    async def record_usage(self, usage: TokenUsage) -> Settings:
        """Add one completion's token usage to the running counter"""
        settings = await self.get_settings()
        counter = settings.token_counter + usage.normalized()
        return await self.save_settings({"tokenCounter": counter.to_wire()})
