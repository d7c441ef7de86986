"""Settings data models with write-time normalization"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from .base import WireModel


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class CoachingStyle(str, Enum):
    INTERVIEWER = "interviewer"
    COLLABORATIVE = "collaborative"
    SOCRATIC = "socratic"


class ResponseStyle(str, Enum):
    CONCISE = "concise"
    BALANCED = "balanced"
    DETAILED = "detailed"


class PersonaMode(str, Enum):
    """Per-request persona that overrides the coaching style"""

    INTERVIEWER = "interviewer"
    COLLABORATOR = "collaborator"


DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 700
TEMPERATURE_RANGE = (0.0, 1.0)
MAX_TOKENS_RANGE = (100, 4000)


def clamp_number(value: Any, low: float, high: float, fallback: float) -> float:
    """Clamp a numeric-looking value into [low, high], or fall back"""
    if isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return max(low, min(high, parsed))


def _choice(value: Any, choices: type[Enum], fallback: Enum) -> Any:
    if isinstance(value, choices):
        return value
    if isinstance(value, str) and value in choices._value2member_map_:
        return value
    return fallback


def _to_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


class TokenUsage(WireModel):
    """Token counts reported by one completion"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @field_validator("prompt_tokens", "completion_tokens", "total_tokens", mode="before")
    @classmethod
    def _non_negative(cls, value: Any) -> int:
        return _to_count(value)

    def normalized(self) -> "TokenUsage":
        total = self.total_tokens or self.prompt_tokens + self.completion_tokens
        return TokenUsage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=total,
        )

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class UiPreferences(WireModel):
    """Panel placement and persona choice remembered per host"""

    panel_rect_by_host: dict[str, dict[str, float]] = Field(default_factory=dict)
    persona_by_host: dict[str, PersonaMode] = Field(default_factory=dict)

    @field_validator("persona_by_host", mode="before")
    @classmethod
    def _drop_unknown_personas(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        allowed = {mode.value for mode in PersonaMode}
        return {host: mode for host, mode in value.items() if isinstance(mode, str) and mode in allowed}

    @field_validator("panel_rect_by_host", mode="before")
    @classmethod
    def _keep_rects(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        return {host: rect for host, rect in value.items() if isinstance(rect, dict)}


class Settings(WireModel):
    """Process-wide settings. Every field is clamped or defaulted on validation."""

    provider: Provider = Provider.OPENAI
    model: str = DEFAULT_MODEL
    api_key: str = ""
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    coaching_style: CoachingStyle = CoachingStyle.INTERVIEWER
    response_style: ResponseStyle = ResponseStyle.BALANCED
    system_prompt_override: str = ""
    token_counter: TokenUsage = Field(default_factory=TokenUsage)
    ui: UiPreferences = Field(default_factory=UiPreferences)

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        return _choice(value, Provider, Provider.OPENAI)

    @field_validator("coaching_style", mode="before")
    @classmethod
    def _normalize_coaching(cls, value: Any) -> Any:
        return _choice(value, CoachingStyle, CoachingStyle.INTERVIEWER)

    @field_validator("response_style", mode="before")
    @classmethod
    def _normalize_response(cls, value: Any) -> Any:
        return _choice(value, ResponseStyle, ResponseStyle.BALANCED)

    @field_validator("model", mode="before")
    @classmethod
    def _normalize_model(cls, value: Any) -> str:
        text = value.strip() if isinstance(value, str) else ""
        return text or DEFAULT_MODEL

    @field_validator("api_key", "system_prompt_override", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("temperature", mode="before")
    @classmethod
    def _clamp_temperature(cls, value: Any) -> float:
        return clamp_number(value, *TEMPERATURE_RANGE, DEFAULT_TEMPERATURE)

    @field_validator("max_tokens", mode="before")
    @classmethod
    def _clamp_max_tokens(cls, value: Any) -> int:
        return int(clamp_number(value, *MAX_TOKENS_RANGE, DEFAULT_MAX_TOKENS))

    @field_validator("token_counter", mode="before")
    @classmethod
    def _default_counter(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, TokenUsage)) else {}

    @field_validator("ui", mode="before")
    @classmethod
    def _default_ui(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, UiPreferences)) else {}

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)
