"""
Problem context extraction

A selector-based reader per known site plus a generic fallback. The parsing is
deliberately shallow: title, statement text, and the Constraints / Example
sections split out of the statement.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence
from urllib.parse import urlparse

from models.tab_state import ProblemContext, SiteId

from .page import PageNode, PageQuery

SIGNATURE_DESCRIPTION_CHARS = 1500
GENERIC_MIN_DESCRIPTION = 100

_CONSTRAINTS = re.compile(r"Constraints?:([\s\S]*?)(?:Example\s*\d*:|\Z)", re.IGNORECASE)
_EXAMPLES = re.compile(r"Example\s*\d*:([\s\S]*?)(?=Example\s*\d*:|Constraints?:|\Z)", re.IGNORECASE)


def clean_text(value: str) -> str:
    text = (value or "").replace("\u00a0", " ").replace("\r", "")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def node_text(node: Optional[PageNode]) -> str:
    return clean_text(node.text) if node is not None else ""


def first_by_selectors(page: PageQuery, selectors: Sequence[str]) -> Optional[PageNode]:
    """First node, in selector order, that has any text"""
    for selector in selectors:
        node = page.select_one(selector)
        if node is not None and node_text(node):
            return node
    return None


def parse_sections(text: str) -> tuple[str, str]:
    """Split (constraints, examples) out of a problem statement"""
    if not text:
        return "", ""
    match = _CONSTRAINTS.search(text)
    constraints = clean_text(match.group(1)) if match else ""
    examples = [clean_text(m.group(1)) for m in _EXAMPLES.finditer(text)]
    return constraints, "\n\n---\n\n".join(example for example in examples if example)


def build_context(site: SiteId, url: str, title: str, description: str) -> ProblemContext:
    constraints, examples = parse_sections(description)
    return ProblemContext(
        site=site,
        url=url,
        title=title,
        description=description,
        constraints=constraints,
        examples=examples,
    )


def detect_site(url: str) -> SiteId:
    host = (urlparse(url).hostname or "").lower()
    if "leetcode.com" in host:
        return SiteId.LEETCODE
    if "neetcode.io" in host:
        return SiteId.NEETCODE
    if "hackerrank.com" in host:
        return SiteId.HACKERRANK
    return SiteId.GENERIC


def _extract_leetcode(page: PageQuery) -> Optional[ProblemContext]:
    title = node_text(first_by_selectors(page, ["[data-cy='question-title']", "div.text-title-large", "h1"]))
    description = node_text(
        first_by_selectors(
            page,
            [
                "div[data-track-load='description_content']",
                "[data-key='description-content']",
                "#description",
                "main article",
                "main",
            ],
        )
    )
    if not title and not description:
        return None
    return build_context(SiteId.LEETCODE, page.url, title, description)


def _extract_neetcode(page: PageQuery) -> Optional[ProblemContext]:
    title = node_text(first_by_selectors(page, ["main h1", "article h1", "[class*='text-2xl']", "h1"])) or clean_text(
        re.sub(r"\s*-\s*NeetCode.*", "", page.title, flags=re.IGNORECASE)
    )
    description = node_text(
        first_by_selectors(
            page,
            ["main article", "main [class*='prose']", "[class*='problem'] [class*='content']", "main"],
        )
    )
    if not title and not description:
        return None
    return build_context(SiteId.NEETCODE, page.url, title, description)


def _extract_hackerrank(page: PageQuery) -> Optional[ProblemContext]:
    title = node_text(first_by_selectors(page, ["h1.challenge-title", ".challenge-header h1", "h1"]))
    description = node_text(
        first_by_selectors(
            page,
            [".challenge_problem_statement", ".challenge-body-html", ".challenge-body", "main"],
        )
    )
    if not title and not description:
        return None
    return build_context(SiteId.HACKERRANK, page.url, title, description)


def _extract_generic(page: PageQuery) -> Optional[ProblemContext]:
    title = node_text(first_by_selectors(page, ["h1", "h2"])) or clean_text(page.title)
    candidates = [
        node_text(node) for node in page.select("main, article, section, [role='main'], .problem-statement")
    ]
    candidates = [text for text in candidates if len(text) > GENERIC_MIN_DESCRIPTION]
    description = max(candidates, key=len, default="")
    if not title and not description:
        return None
    return build_context(SiteId.GENERIC, page.url, title, description)


_EXTRACTORS = {
    SiteId.LEETCODE: _extract_leetcode,
    SiteId.NEETCODE: _extract_neetcode,
    SiteId.HACKERRANK: _extract_hackerrank,
    SiteId.GENERIC: _extract_generic,
}


def extract_problem_context(page: PageQuery) -> Optional[ProblemContext]:
    return _EXTRACTORS[detect_site(page.url)](page)


def context_signature(context: Optional[ProblemContext]) -> str:
    """Cheap change key: url, title and the head of the description"""
    if context is None:
        return ""
    return "|".join([context.url, context.title, context.description[:SIGNATURE_DESCRIPTION_CHARS]])
