# File: kb_scout/aggregator.py
"""kb_scout.aggregator: accumulates crawl outcomes into a :class:`CrawlResult`."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from kb_scout.crawler.models import CrawlError, JobState, ScrapedPage

__all__ = (
    "AuthenticationAttempts",
    "CrawlSummary",
    "CrawlResult",
    "ResultAggregator",
)

AUTH_FAMILIES = ("sso", "credentials", "failed")


@dataclass(frozen=True, slots=True)
class AuthenticationAttempts:
    sso: int = 0
    credentials: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class CrawlSummary:
    """Counters of a crawl. ``total_pages = successful + failed + duplicate``."""

    total_pages: int
    successful_pages: int
    failed_pages: int
    duplicate_pages: int
    skipped_pages: int
    errors: Tuple[CrawlError, ...]
    start_time: datetime
    end_time: Optional[datetime]
    duration: float
    authentication_attempts: AuthenticationAttempts = field(default_factory=AuthenticationAttempts)


@dataclass(frozen=True, slots=True)
class CrawlResult:
    """Immutable (partial or final) outcome of one crawl job."""

    base_url: str
    status: JobState
    pages: Tuple[ScrapedPage, ...]
    summary: CrawlSummary

    @property
    def finished(self) -> bool:
        return self.summary.end_time is not None

    @property
    def credential_errors(self) -> List[CrawlError]:
        return [e for e in self.summary.errors if e.needs_credentials]

    def to_dict(self) -> Dict[str, Any]:
        s = self.summary
        return {
            "base_url": self.base_url,
            "status": self.status.value,
            "pages": [p.to_dict() for p in self.pages],
            "summary": {
                "total_pages": s.total_pages,
                "successful_pages": s.successful_pages,
                "failed_pages": s.failed_pages,
                "duplicate_pages": s.duplicate_pages,
                "skipped_pages": s.skipped_pages,
                "errors": [e.to_dict() for e in s.errors],
                "start_time": s.start_time.isoformat(),
                "end_time": s.end_time.isoformat() if s.end_time else None,
                "duration": round(s.duration, 3),
                "authentication_attempts": {
                    "sso": s.authentication_attempts.sso,
                    "credentials": s.authentication_attempts.credentials,
                    "failed": s.authentication_attempts.failed,
                },
            },
        }

    def json(self, *, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2 if pretty else None)


class ResultAggregator:
    """Mutable accumulator owned by the crawl coordinator.

    :meth:`snapshot` returns a consistent immutable copy at any time;
    :meth:`finalize` stamps the end time and closes the aggregator, after
    which every ``record*`` call raises ``RuntimeError``.
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self.start_time = datetime.now(timezone.utc)
        self._t0 = time.monotonic()
        self._pages: List[Tuple[int, int, ScrapedPage]] = []
        self._errors: List[CrawlError] = []
        self._duplicates: List[str] = []
        self._skipped: List[str] = []
        self._auth: Dict[str, int] = dict.fromkeys(AUTH_FAMILIES, 0)
        self._result: Optional[CrawlResult] = None

    @property
    def closed(self) -> bool:
        return self._result is not None

    def _ensure_open(self) -> None:
        if self._result is not None:
            raise RuntimeError("CrawlResult already finalized")

    def record(
        self,
        page: Optional[ScrapedPage] = None,
        error: Optional[CrawlError] = None,
        sequence: Optional[int] = None,
    ) -> None:
        """Record exactly one successful page or one error."""
        self._ensure_open()
        if (page is None) == (error is None):
            raise ValueError("record() needs exactly one of page or error")
        if page is not None:
            order = len(self._pages) if sequence is None else sequence
            self._pages.append((order, len(self._pages), page))
        else:
            self._errors.append(error)  # type: ignore[arg-type]

    def record_duplicate(self, url: str) -> None:
        self._ensure_open()
        self._duplicates.append(url)

    def record_skip(self, url: str) -> None:
        self._ensure_open()
        self._skipped.append(url)

    def record_auth(self, family: str) -> None:
        self._ensure_open()
        if family not in self._auth:
            raise ValueError(f"Unknown authentication family: {family!r}")
        self._auth[family] += 1

    @property
    def successful_pages(self) -> int:
        return len(self._pages)

    @property
    def total_pages(self) -> int:
        return len(self._pages) + len(self._errors) + len(self._duplicates)

    def _build(self, status: Union[JobState, str], end_time: Optional[datetime]) -> CrawlResult:
        pages = tuple(p for _, _, p in sorted(self._pages, key=lambda item: item[:2]))
        summary = CrawlSummary(
            total_pages=self.total_pages,
            successful_pages=len(self._pages),
            failed_pages=len(self._errors),
            duplicate_pages=len(self._duplicates),
            skipped_pages=len(self._skipped),
            errors=tuple(self._errors),
            start_time=self.start_time,
            end_time=end_time,
            duration=time.monotonic() - self._t0,
            authentication_attempts=AuthenticationAttempts(**self._auth),
        )
        return CrawlResult(
            base_url=self.base_url,
            status=JobState(status),
            pages=pages,
            summary=summary,
        )

    def snapshot(self, status: Union[JobState, str] = JobState.RUNNING) -> CrawlResult:
        if self._result is not None:
            return self._result
        return self._build(status, None)

    def finalize(self, status: Union[JobState, str] = JobState.COMPLETED) -> CrawlResult:
        self._ensure_open()
        self._result = self._build(status, datetime.now(timezone.utc))
        return self._result
