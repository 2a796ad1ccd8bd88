"""kb_scout.errors: error taxonomy of the crawl engine.

Only :class:`ValidationError` and :class:`NotFoundError` escape a crawl job;
the per-URL errors are caught by the crawler and turned into
:class:`~kb_scout.crawler.models.CrawlError` records.
"""
from __future__ import annotations

from typing import Optional

__all__ = (
    "KBScoutError",
    "ValidationError",
    "NotFoundError",
    "AuthFailure",
    "FetchError",
    "ExtractError",
)


class KBScoutError(Exception):
    """Base class for all KBScout errors."""


class ValidationError(KBScoutError, ValueError):
    """Malformed or missing job configuration; fails the job before any fetch."""


class NotFoundError(KBScoutError, LookupError):
    """Unknown template id."""


class AuthFailure(KBScoutError):
    """No configured strategy could authenticate a request to *url*."""

    def __init__(
        self,
        url: str,
        message: str,
        *,
        needs_credentials: bool = True,
        login_method: str = "unknown",
    ) -> None:
        super().__init__(message)
        self.url = url
        self.needs_credentials = needs_credentials
        self.login_method = login_method


class FetchError(KBScoutError):
    """Network error, timeout or non-2xx status for a single URL."""

    def __init__(self, url: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ExtractError(KBScoutError):
    """Fetched content could not be turned into a page (non-HTML, empty, unparseable)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url
