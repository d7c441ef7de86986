"""
Page boundary - What the observer is allowed to ask of the hosting page

The in-page bridge serializes the tab into a `PageSnapshot`: url, title, the
rendered HTML, and the state of any editor objects it could reach. Probes and
extractors only see the `PageQuery` protocol, so tests can build pages from
plain HTML strings.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Literal, Optional, Protocol

from bs4 import BeautifulSoup, Tag
from pydantic import Field

from models.base import WireModel

EditorKind = Literal["monaco", "codemirror", "ace"]

_HIDDEN_STYLE = re.compile(r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE)


class LiveEditorState(WireModel):
    """One editor object read by the bridge.

    `selection` is kept in the editor's own coordinates:
    monaco `{startLineNumber, startColumn, endLineNumber, endColumn}` (1-based),
    codemirror `{from, to}` offsets, ace `{start: {row, column}, end: {row, column}}`.
    """

    kind: EditorKind
    code: str = ""
    language: Optional[str] = None
    attached: bool = True  # False for a Monaco model with no editor instance
    selection: Optional[dict[str, Any]] = None


class PageSnapshot(WireModel):
    """Serialized tab as written by the in-page bridge"""

    url: str = ""
    title: str = ""
    html: str = ""
    editors: list[LiveEditorState] = Field(default_factory=list)


class PageNode(Protocol):
    @property
    def text(self) -> str: ...

    @property
    def value(self) -> str: ...

    def attr(self, name: str) -> Optional[str]: ...

    def select(self, selector: str) -> list["PageNode"]: ...

    def is_visible(self) -> bool: ...


class PageQuery(Protocol):
    @property
    def url(self) -> str: ...

    @property
    def title(self) -> str: ...

    def select(self, selector: str) -> list[PageNode]: ...

    def select_one(self, selector: str) -> Optional[PageNode]: ...

    def live_editors(self, kind: EditorKind) -> list[LiveEditorState]: ...


class SoupNode:
    """PageNode over a BeautifulSoup tag"""

    def __init__(self, tag: Tag):
        self._tag = tag

    @property
    def name(self) -> str:
        return self._tag.name or ""

    @property
    def text(self) -> str:
        return self._tag.get_text()

    @property
    def value(self) -> str:
        """Current value of a form control, else its text"""
        if self._tag.name == "input":
            return str(self._tag.get("value") or "")
        if self._tag.name == "textarea" and self._tag.has_attr("data-value"):
            # The bridge copies the live value here when it differs from the markup.
            return str(self._tag["data-value"])
        return self._tag.get_text()

    def attr(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if value is None:
            return None
        return " ".join(value) if isinstance(value, list) else str(value)

    def select(self, selector: str) -> list[PageNode]:
        return [SoupNode(tag) for tag in self._tag.select(selector)]

    def is_visible(self) -> bool:
        for tag in _self_and_parents(self._tag):
            if tag.has_attr("hidden") or tag.get("aria-hidden") == "true":
                return False
            if tag.name == "input" and tag.get("type") == "hidden":
                return False
            if _HIDDEN_STYLE.search(str(tag.get("style") or "")):
                return False
        return True

    def __repr__(self) -> str:
        return f"SoupNode(<{self.name}>)"


def _self_and_parents(tag: Tag) -> Iterable[Tag]:
    current: Optional[Tag] = tag
    while current is not None and current.name != "[document]":
        yield current
        current = current.parent


class SnapshotPage:
    """PageQuery over a PageSnapshot, parsed once"""

    def __init__(self, snapshot: PageSnapshot):
        self.snapshot = snapshot
        self._soup = BeautifulSoup(snapshot.html or "", "html.parser")

    @classmethod
    def from_html(cls, html: str, url: str = "", title: Optional[str] = None, editors: Any = None) -> "SnapshotPage":
        snapshot = PageSnapshot(url=url, title=title or "", html=html, editors=editors or [])
        page = cls(snapshot)
        if title is None and page._soup.title is not None:
            page.snapshot = snapshot.model_copy(update={"title": page._soup.title.get_text().strip()})
        return page

    @property
    def url(self) -> str:
        return self.snapshot.url

    @property
    def title(self) -> str:
        return self.snapshot.title

    def select(self, selector: str) -> list[PageNode]:
        return [SoupNode(tag) for tag in self._soup.select(selector)]

    def select_one(self, selector: str) -> Optional[PageNode]:
        tag = self._soup.select_one(selector)
        return SoupNode(tag) if tag is not None else None

    def live_editors(self, kind: EditorKind) -> list[LiveEditorState]:
        return [editor for editor in self.snapshot.editors if editor.kind == kind]
