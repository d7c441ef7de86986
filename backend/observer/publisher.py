"""
Context/State Publisher - Pushes changed context and code to the coordinator

Redundant updates are suppressed: context by signature, code by (code, source).
A manual snapshot is held above automatic capture until it is released.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from models.tab_state import CodeSnapshot, ProblemContext, SnapshotSource, TabState

from .extraction import context_signature, extract_problem_context
from .page import PageQuery

logger = logging.getLogger(__name__)

READY_CONFIDENCE = 0.7


class Bus(Protocol):
    async def request(self, message: dict[str, Any]) -> dict[str, Any]: ...


class ContextPublisher:
    """Tab-side copy of the published state plus the suppression rules"""

    def __init__(self, bus: Bus):
        self._bus = bus
        self.context: Optional[ProblemContext] = None
        self.code_snapshot: Optional[CodeSnapshot] = None
        self.last_signature = ""
        self.manual_pinned = False
        self.status_text = "Scanning page..."
        self.status_type = "warn"

    def hydrate(self, state: TabState) -> None:
        """Adopt what the coordinator already holds for this tab"""
        self.context = state.context
        self.code_snapshot = state.code_snapshot
        self.manual_pinned = bool(state.code_snapshot and state.code_snapshot.source == SnapshotSource.MANUAL)
        if state.context is not None:
            self.last_signature = context_signature(state.context)
            self._set_context_status(state.context)

    def _set_context_status(self, context: ProblemContext) -> None:
        ready = context.confidence >= READY_CONFIDENCE
        self.status_text = "Ready" if ready else "Partial context detected"
        self.status_type = "ok" if ready else "warn"

    async def publish_context(self, page: PageQuery, force: bool = False) -> Optional[ProblemContext]:
        """Extract, and publish when the signature moved or when forced"""
        context = extract_problem_context(page)
        if context is None:
            self.status_text = "No problem context found"
            self.status_type = "warn"
            return self.context

        signature = context_signature(context)
        if not force and signature == self.last_signature:
            return self.context

        self.last_signature = signature
        self.context = context
        self._set_context_status(context)
        await self._bus.request({"type": "CONTEXT_UPDATE", "context": context.to_wire()})
        logger.info("[Publisher] Context published (%s, confidence=%.2f)", context.site.value, context.confidence)
        return context

    async def publish_code(self, snapshot: Optional[CodeSnapshot]) -> bool:
        """Publish a captured snapshot if it is new; returns whether it was sent"""
        if snapshot is None or not snapshot.code.strip():
            return False
        if self.manual_pinned and snapshot.source != SnapshotSource.MANUAL:
            return False
        held = self.code_snapshot
        if held is not None and held.code == snapshot.code and held.source == snapshot.source:
            return False

        self.code_snapshot = snapshot
        await self._bus.request({"type": "CODE_SNAPSHOT_UPDATE", "snapshot": snapshot.to_wire()})
        logger.info("[Publisher] Code snapshot published (%s, %d chars)", snapshot.source.value, len(snapshot.code))
        return True

    async def set_manual(self, code: str, language: Optional[str] = None) -> bool:
        """Hold user-supplied code above automatic capture"""
        if not code or not code.strip():
            return False
        self.manual_pinned = True
        return await self.publish_code(CodeSnapshot(source=SnapshotSource.MANUAL, language=language, code=code))

    def release_manual(self) -> None:
        """Let the next automatic scan replace the manual snapshot"""
        self.manual_pinned = False
