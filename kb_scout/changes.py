# File: kb_scout/changes.py
"""kb_scout.changes: content change detection between two crawls of the same site."""

from __future__ import annotations

import difflib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from kb_scout.crawler.models import ScrapedPage
from kb_scout.utils import normalize_url

__all__ = (
    "SIGNIFICANT_CHANGE_PERCENT",
    "ContentChange",
    "PageComparison",
    "calculate_content_changes",
    "compare_pages",
    "load_result_pages",
)

SIGNIFICANT_CHANGE_PERCENT = 5.0

PageLike = Union[ScrapedPage, Mapping[str, Any]]


@dataclass(frozen=True, slots=True)
class ContentChange:
    change_percentage: float
    change_summary: str
    has_significant_changes: bool


@dataclass(frozen=True, slots=True)
class PageComparison:
    """Pages of two crawls matched by normalized URL and compared by content hash."""

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    modified: Tuple[str, ...] = ()
    unchanged: Tuple[str, ...] = ()
    changes: Dict[str, ContentChange] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


def calculate_content_changes(old_content: str, new_content: str) -> ContentChange:
    """Word-level diff of two texts; more than 5 % changed words is significant."""
    if old_content == new_content:
        return ContentChange(0.0, "No changes detected", False)

    old_words = old_content.split()
    new_words = new_content.split()
    matcher = difflib.SequenceMatcher(None, old_words, new_words, autojunk=False)
    added = removed = same = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            same += i2 - i1
        else:
            removed += i2 - i1
            added += j2 - j1

    total = same + added + removed
    percentage = (added + removed) / total * 100 if total else 0.0
    parts = []
    if added:
        parts.append(f"+{added} words added")
    if removed:
        parts.append(f"-{removed} words removed")
    summary = ", ".join(parts) or "Minor changes detected"
    return ContentChange(
        change_percentage=round(percentage, 2),
        change_summary=summary,
        has_significant_changes=percentage > SIGNIFICANT_CHANGE_PERCENT,
    )


def _fields(page: PageLike) -> Tuple[str, str, str]:
    if isinstance(page, ScrapedPage):
        return page.url, page.content_hash, page.content
    return str(page["url"]), str(page.get("content_hash", "")), str(page.get("content", ""))


def _index(pages: Iterable[PageLike]) -> Dict[str, Tuple[str, str, str]]:
    index: Dict[str, Tuple[str, str, str]] = {}
    for page in pages:
        url, digest, content = _fields(page)
        index.setdefault(normalize_url(url), (url, digest, content))
    return index


def compare_pages(previous: Iterable[PageLike], current: Iterable[PageLike]) -> PageComparison:
    old = _index(previous)
    new = _index(current)
    added: List[str] = [new[key][0] for key in new if key not in old]
    removed: List[str] = [old[key][0] for key in old if key not in new]
    modified: List[str] = []
    unchanged: List[str] = []
    changes: Dict[str, ContentChange] = {}
    for key, (url, digest, content) in new.items():
        if key not in old:
            continue
        _, old_digest, old_content = old[key]
        if digest == old_digest:
            unchanged.append(url)
            continue
        modified.append(url)
        changes[url] = calculate_content_changes(old_content, content)
    return PageComparison(
        added=tuple(added),
        removed=tuple(removed),
        modified=tuple(modified),
        unchanged=tuple(unchanged),
        changes=changes,
    )


def load_result_pages(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Pages of a JSON crawl report written by :func:`kb_scout.report.render_json`."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict) or not isinstance(data.get("pages"), list):
        raise ValueError(f"{path} is not a crawl result")
    return data["pages"]
