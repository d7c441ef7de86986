"""
Editor probes - One pure function per capture source

Each probe looks at the page and returns a CodeSnapshot or None. Probes never
raise for a page they do not understand.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from models.tab_state import CodeSnapshot, SelectionRange, SnapshotSource

from .page import LiveEditorState, PageQuery

Probe = Callable[[PageQuery], Optional[CodeSnapshot]]

NBSP = "\u00a0"
MIN_TEXTAREA_CHARS = 8
EDITOR_CONTAINERS = ".monaco-editor, .cm-editor, .cm-content, .CodeMirror, .ace_editor"


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _line_offset(code: str, line_index: int, column_index: int) -> int:
    """Offset of a 0-based (line, column) position, clamped into the text"""
    lines = code.split("\n")
    line_index = max(0, min(line_index, len(lines) - 1))
    offset = sum(len(line) + 1 for line in lines[:line_index])
    column_index = max(0, min(column_index, len(lines[line_index])))
    return offset + column_index


def _ordered_range(code: str, start: int, end: int) -> SelectionRange:
    start = max(0, min(start, len(code)))
    end = max(0, min(end, len(code)))
    if end < start:
        start, end = end, start
    return SelectionRange(start=start, end=end)


def _snapshot(source: SnapshotSource, code: str, language: Optional[str] = None, selection=None) -> Optional[CodeSnapshot]:
    if not code.strip():
        return None
    return CodeSnapshot(source=source, language=language, code=code, selection=selection)


# ========== Live-object readers ==========


def monaco_selection(code: str, selection: Optional[dict[str, Any]]) -> Optional[SelectionRange]:
    if not selection:
        return None
    start = _line_offset(
        code,
        _as_int(selection.get("startLineNumber"), 1) - 1,
        _as_int(selection.get("startColumn"), 1) - 1,
    )
    end = _line_offset(
        code,
        _as_int(selection.get("endLineNumber"), 1) - 1,
        _as_int(selection.get("endColumn"), 1) - 1,
    )
    return _ordered_range(code, start, end)


def codemirror_selection(code: str, selection: Optional[dict[str, Any]]) -> Optional[SelectionRange]:
    if not selection:
        return None
    return _ordered_range(code, _as_int(selection.get("from"), 0), _as_int(selection.get("to"), 0))


def ace_selection(code: str, selection: Optional[dict[str, Any]]) -> Optional[SelectionRange]:
    if not selection:
        return None
    start = selection.get("start") or {}
    end = selection.get("end") or {}
    return _ordered_range(
        code,
        _line_offset(code, _as_int(start.get("row"), 0), _as_int(start.get("column"), 0)),
        _line_offset(code, _as_int(end.get("row"), 0), _as_int(end.get("column"), 0)),
    )


def read_monaco_live(page: PageQuery) -> Optional[CodeSnapshot]:
    """Longest attached editor with its selection, else the first bare model"""
    states = page.live_editors("monaco")
    attached = [state for state in states if state.attached and state.code.strip()]
    if attached:
        best = max(attached, key=lambda state: len(state.code))
        return _snapshot(
            SnapshotSource.MONACO,
            best.code,
            best.language,
            monaco_selection(best.code, best.selection),
        )

    models = [state for state in states if not state.attached]
    if models:
        first: LiveEditorState = models[0]
        return _snapshot(SnapshotSource.MONACO, first.code, first.language)
    return None


def read_codemirror_live(page: PageQuery) -> Optional[CodeSnapshot]:
    for state in page.live_editors("codemirror"):
        if state.code.strip():
            return _snapshot(
                SnapshotSource.CODEMIRROR,
                state.code,
                state.language,
                codemirror_selection(state.code, state.selection),
            )
    return None


def read_ace_live(page: PageQuery) -> Optional[CodeSnapshot]:
    for state in page.live_editors("ace"):
        if state.code.strip():
            return _snapshot(
                SnapshotSource.ACE,
                state.code,
                state.language,
                ace_selection(state.code, state.selection),
            )
    return None


# ========== Rendered-DOM readers ==========


def _join_lines(nodes) -> str:
    return "\n".join(node.text.replace(NBSP, " ") for node in nodes).strip()


def read_monaco_dom(page: PageQuery) -> Optional[CodeSnapshot]:
    lines = page.select(".monaco-editor .view-line")
    code = _join_lines(lines)
    if code:
        return _snapshot(SnapshotSource.MONACO, code)

    areas = [area.value for area in page.select(".monaco-editor textarea.inputarea")]
    best = max(areas, key=len, default="")
    return _snapshot(SnapshotSource.MONACO, best)


def read_codemirror_dom(page: PageQuery) -> Optional[CodeSnapshot]:
    best = ""
    for editor in page.select(".cm-content"):
        text = _join_lines(editor.select(".cm-line"))
        if len(text) > len(best):
            best = text
    if best:
        return _snapshot(SnapshotSource.CODEMIRROR, best)

    content = page.select_one(".cm-content")
    if content is None:
        return None
    areas = content.select("textarea")
    return _snapshot(SnapshotSource.CODEMIRROR, areas[0].value) if areas else None


def read_ace_dom(page: PageQuery) -> Optional[CodeSnapshot]:
    code = _join_lines(page.select(".ace_editor .ace_line"))
    return _snapshot(SnapshotSource.ACE, code)


# ========== Generic fallback ==========


def _non_whitespace(text: str) -> int:
    return sum(1 for ch in text if not ch.isspace())


def read_textarea(page: PageQuery) -> Optional[CodeSnapshot]:
    """Visible textarea or contenteditable with the most code-like text"""
    if page.select_one(EDITOR_CONTAINERS) is not None:
        return None

    best_code, best_count, best_node = "", 0, None
    for node in page.select("textarea, [contenteditable]"):
        if node.attr("contenteditable") == "false" or not node.is_visible():
            continue
        code = node.value
        count = _non_whitespace(code)
        if count > best_count:
            best_code, best_count, best_node = code, count, node

    if best_node is None or best_count < MIN_TEXTAREA_CHARS:
        return None

    start = _as_int(_parse_int(best_node.attr("data-selection-start")), 0)
    end = _as_int(_parse_int(best_node.attr("data-selection-end")), len(best_code))
    return _snapshot(SnapshotSource.TEXTAREA, best_code, None, _ordered_range(best_code, start, end))


def _parse_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


LIVE_PROBES: tuple[Probe, ...] = (read_monaco_live, read_codemirror_live, read_ace_live)
DOM_PROBES: tuple[Probe, ...] = (read_monaco_dom, read_codemirror_dom, read_ace_dom)
FALLBACK_PROBES: tuple[Probe, ...] = (read_textarea,)
