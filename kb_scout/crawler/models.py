# kb_scout/crawler/models.py
"""
Data models of the KBScout crawler: frontier entries, fetched responses,
extracted pages and per-URL errors.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

__all__ = (
    "JobState",
    "FrontierEntry",
    "FetchResponse",
    "PageMetadata",
    "ScrapedPage",
    "CrawlError",
)

HTML_MIME_TYPES = ("text/html", "application/xhtml+xml")


class JobState(str, Enum):
    """Lifecycle of a crawl job: pending → running → completed | cancelled | failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in (JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED)


@dataclass(frozen=True, slots=True)
class FrontierEntry:
    """A URL waiting in (or taken from) the frontier. ``url`` is normalized."""

    url: str
    depth: int
    parent_url: Optional[str] = None
    sequence: int = 0


@dataclass(slots=True)
class FetchResponse:
    """Outcome of one HTTP exchange, after redirects."""

    url: str
    final_url: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    redirected: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        """MIME type without parameters, lower-cased (``""`` when absent)."""
        raw = ""
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                raw = value
                break
        return raw.split(";", 1)[0].strip().lower()

    @property
    def is_html(self) -> bool:
        return self.content_type in HTML_MIME_TYPES


@dataclass(frozen=True, slots=True)
class PageMetadata:
    domain: str
    links: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()
    headings: Tuple[str, ...] = ()
    description: Optional[str] = None
    keywords: Optional[str] = None
    author: Optional[str] = None
    published_date: Optional[str] = None
    word_count: int = 0
    language: Optional[str] = None
    depth: int = 0
    parent_url: Optional[str] = None
    content_type: Optional[str] = None
    auth_method: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ScrapedPage:
    """One successfully fetched and parsed page. Immutable once created."""

    url: str
    title: str
    content: str
    content_hash: str
    metadata: PageMetadata
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        for key in ("links", "images", "headings"):
            data["metadata"][key] = list(data["metadata"][key])
        return data


@dataclass(frozen=True, slots=True)
class CrawlError:
    """Terminal failure of a single URL."""

    url: str
    error: str
    needs_credentials: bool = False
    login_method: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
