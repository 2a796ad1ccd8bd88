# kb_scout/crawler/scope.py
"""
URL scope of a crawl job: which hosts are followed and which URLs pass the
include/exclude patterns.

Patterns are regex fragments searched anywhere in the URL (``docs``,
``/api/v[0-9]+/``). A pattern that is not a valid regex is treated as a
glob over the whole URL (``*.pdf``, ``*/guide/*``); ``*`` matches everything.
"""
from __future__ import annotations

import fnmatch
import re
from typing import Iterable, List, Optional, Tuple

from kb_scout.utils import extract_domain, is_http_url, normalize_url

__all__ = ("UrlPattern", "UrlScope")


class UrlPattern:
    """One include/exclude pattern."""

    __slots__ = ("raw", "_regex", "_glob")

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self._glob = False
        self._regex: Optional[re.Pattern[str]]
        if raw == "*":
            self._regex = None
            return
        try:
            self._regex = re.compile(raw)
        except re.error:
            self._regex = re.compile(fnmatch.translate(raw))
            self._glob = True

    def matches(self, url: str) -> bool:
        if self._regex is None:
            return True
        if self._glob:
            return self._regex.match(url) is not None
        return self._regex.search(url) is not None

    def __repr__(self) -> str:
        return f"UrlPattern({self.raw!r})"


class UrlScope:
    """Decides whether a discovered URL belongs to the job.

    A link is followed when its host is the start host or is named in one
    of the include patterns. The start URL itself is exempt from the
    include patterns but not from the exclude patterns.
    """

    def __init__(
        self,
        base_url: str,
        include_patterns: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
    ) -> None:
        self.base_host = extract_domain(base_url)
        self.start_key = normalize_url(base_url)
        self.include: List[UrlPattern] = [UrlPattern(p) for p in include_patterns]
        self.exclude: List[UrlPattern] = [UrlPattern(p) for p in exclude_patterns]

    def host_in_scope(self, url: str) -> bool:
        if not is_http_url(url):
            return False
        host = extract_domain(url)
        if host == self.base_host:
            return True
        return any(host and host in p.raw for p in self.include)

    def check(self, url: str) -> Tuple[bool, str]:
        """Return ``(admitted, reason)``; *reason* explains a rejection."""
        for pattern in self.exclude:
            if pattern.matches(url):
                return False, f"excluded by {pattern.raw!r}"
        if self.include and normalize_url(url) != self.start_key:
            if not any(p.matches(url) for p in self.include):
                return False, "matches no include pattern"
        return True, ""

    def admits(self, url: str) -> bool:
        return self.check(url)[0]
