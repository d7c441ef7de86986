"""Per-tab state models: problem context and captured code"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, ValidationError, field_validator, model_validator

from .base import WireModel


class SiteId(str, Enum):
    """Problem sites with a dedicated extractor"""

    LEETCODE = "leetcode"
    NEETCODE = "neetcode"
    HACKERRANK = "hackerrank"
    GENERIC = "generic"


class SnapshotSource(str, Enum):
    """Where a code snapshot was captured from"""

    MONACO = "monaco"
    CODEMIRROR = "codemirror"
    ACE = "ace"
    TEXTAREA = "textarea"
    MANUAL = "manual"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def score_confidence(title: str, description: str, constraints: str, examples: str) -> float:
    """Weight the non-empty extracted fields into a [0, 1] confidence"""
    score = 0.0
    if len(title) > 3:
        score += 0.3
    if len(description) > 120:
        score += 0.4
    if len(constraints) > 10:
        score += 0.15
    if len(examples) > 10:
        score += 0.15
    return round(min(1.0, score), 4)


class SelectionRange(WireModel):
    """Character offsets of the editor selection"""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "SelectionRange":
        if self.end < self.start:
            raise ValueError("selection end must not precede start")
        return self


class ProblemContext(WireModel):
    """Problem statement parsed from the page"""

    model_config = ConfigDict(frozen=True)

    site: SiteId = SiteId.GENERIC
    url: str = ""
    title: str = ""
    description: str = ""
    constraints: str = ""
    examples: str = ""
    confidence: float = 0.0
    extracted_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _recompute_confidence(self) -> "ProblemContext":
        # Confidence always follows the fields, whatever the sender claimed.
        confidence = score_confidence(self.title, self.description, self.constraints, self.examples)
        object.__setattr__(self, "confidence", confidence)
        return self


class CodeSnapshot(WireModel):
    """Code captured from the page editor, replaced as a whole"""

    model_config = ConfigDict(frozen=True)

    source: SnapshotSource
    language: str | None = None
    code: str
    selection: SelectionRange | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("code")
    @classmethod
    def _require_code(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("code snapshot is empty")
        return value


def coerce_snapshot(raw: CodeSnapshot | dict[str, Any] | None) -> CodeSnapshot | None:
    """Return a valid snapshot, or None for missing or blank captures"""
    if raw is None or isinstance(raw, CodeSnapshot):
        return raw
    if not str(raw.get("code") or "").strip():
        return None
    return CodeSnapshot.model_validate(raw)


class TabState(WireModel):
    """Durable per-tab context and code"""

    context: ProblemContext | None = None
    code_snapshot: CodeSnapshot | None = None

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> "TabState":
        if not raw:
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError:
            # A snapshot written by an older build may no longer validate.
            return cls()
