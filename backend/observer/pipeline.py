"""
Code-context capture pipeline

Probes run in a fixed priority order and the first snapshot wins: live editor
objects, then rendered editor DOM, then the generic textarea heuristic.
Manual entry is not a probe; the publisher holds it above every scan.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from models.tab_state import CodeSnapshot

from .adapters import DOM_PROBES, FALLBACK_PROBES, LIVE_PROBES, Probe
from .page import PageQuery

logger = logging.getLogger(__name__)

DEFAULT_PROBES: tuple[Probe, ...] = (*LIVE_PROBES, *DOM_PROBES, *FALLBACK_PROBES)


def capture_code(page: PageQuery, probes: Sequence[Probe] = DEFAULT_PROBES) -> Optional[CodeSnapshot]:
    """Run probes in order and stop at the first non-empty snapshot"""
    for probe in probes:
        snapshot = probe(page)
        if snapshot is not None and snapshot.code.strip():
            logger.debug("[Capture] %s matched (%d chars)", probe.__name__, len(snapshot.code))
            return snapshot
    return None
