# kb_scout/crawler/robots.py
"""
Parser and checker for robots.txt rules, plus a per-origin cache used by the crawler.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional
from urllib.parse import urlparse, urlunparse

from kb_scout.errors import FetchError
from kb_scout.logger import logger

if TYPE_CHECKING:
    from kb_scout.crawler.fetcher import Fetcher

__all__ = ("RobotsTxtRules", "RobotsCache")


@dataclass(frozen=True, slots=True)
class _Rule:
    allow: bool
    pattern: str
    regex: re.Pattern[str]

    @property
    def specificity(self) -> int:
        """Length of the pattern without its wildcards."""
        return len(self.pattern.replace("*", "").replace("$", ""))


@dataclass(slots=True)
class _Group:
    agents: List[str] = field(default_factory=list)
    rules: List[_Rule] = field(default_factory=list)
    crawl_delay: Optional[float] = None
    # set by the first rule line; a later User-agent line starts a new group
    closed: bool = False


def _compile(pattern: str) -> re.Pattern[str]:
    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    return re.compile(regex + ("$" if anchored else ""))


def _product_token(user_agent: str) -> str:
    """``KBScoutBot/1.0 (+https://...)`` -> ``kbscoutbot``."""
    words = user_agent.split("/", 1)[0].split()
    return words[0].lower() if words else ""


class RobotsTxtRules:
    """
    Parsed robots.txt: Allow/Disallow with ``*`` and ``$``, and Crawl-delay.

    Groups naming the same agent are merged. Among matching rules the most
    specific one wins and Allow wins a tie. Rules are compiled once, at parse
    time, and matched against the path and query of a normalized crawl URL.
    """

    def __init__(self, text: str) -> None:
        self._groups: List[_Group] = []
        for group in self._parse(text):
            if group.agents:
                self._groups.append(group)

    def _group_for(self, user_agent: str) -> Optional[_Group]:
        token = _product_token(user_agent)
        named = [g for g in self._groups if token and token in g.agents]
        chosen = named or [g for g in self._groups if "*" in g.agents]
        if not chosen:
            return None
        merged = _Group(agents=[a for g in chosen for a in g.agents])
        for group in chosen:
            merged.rules.extend(group.rules)
            if merged.crawl_delay is None:
                merged.crawl_delay = group.crawl_delay
        return merged

    def can_fetch(self, user_agent: str, target: str) -> bool:
        """*target* is a path (``/a?b=1``) or an absolute URL."""
        group = self._group_for(user_agent)
        if group is None:
            return True
        if "://" in target:
            parsed = urlparse(target)
            target = (parsed.path or "/") + (f"?{parsed.query}" if parsed.query else "")
        best: Optional[_Rule] = None
        for rule in group.rules:
            if not rule.regex.match(target):
                continue
            if (
                best is None
                or rule.specificity > best.specificity
                or (rule.specificity == best.specificity and rule.allow)
            ):
                best = rule
        return True if best is None else best.allow

    def crawl_delay(self, user_agent: str) -> Optional[float]:
        group = self._group_for(user_agent)
        return None if group is None else group.crawl_delay

    @staticmethod
    def _parse(text: str) -> Iterator[_Group]:
        current = _Group()
        for raw in text.splitlines():
            line = raw.split("#", 1)[0].strip()
            key, sep, value = line.partition(":")
            if not sep:
                continue
            key, value = key.strip().lower(), value.strip()
            if key == "user-agent":
                if current.closed:
                    yield current
                    current = _Group()
                current.agents.append(_product_token(value))
                continue
            if key not in ("allow", "disallow", "crawl-delay"):
                continue
            if not current.agents:
                # rules before any User-agent line apply to everyone
                current.agents.append("*")
            current.closed = True
            if key in ("allow", "disallow"):
                if value:
                    current.rules.append(_Rule(key == "allow", value, _compile(value)))
            elif key == "crawl-delay":
                try:
                    current.crawl_delay = float(value)
                except ValueError:
                    logger.debug("Ignoring malformed crawl-delay %r", value)
        yield current


class RobotsCache:
    """Fetches ``/robots.txt`` once per origin for the lifetime of a job.

    Missing, unreachable or non-2xx robots files allow everything.
    """

    def __init__(self, fetcher: Fetcher, user_agent: str) -> None:
        self._fetcher = fetcher
        self._user_agent = user_agent
        self._rules: Dict[str, Optional[RobotsTxtRules]] = {}

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        return urlunparse((parsed.scheme, parsed.netloc, "", "", "", ""))

    async def rules_for(self, url: str) -> Optional[RobotsTxtRules]:
        origin = self._origin(url)
        if origin in self._rules:
            return self._rules[origin]
        robots_url = f"{origin}/robots.txt"
        rules: Optional[RobotsTxtRules] = None
        try:
            resp = await self._fetcher.fetch(robots_url, read_any=True)
            if resp.ok:
                rules = RobotsTxtRules(resp.body)
            else:
                logger.debug("robots.txt %s -> HTTP %s", robots_url, resp.status)
        except FetchError as exc:
            logger.warning("Error loading robots.txt %s: %s", robots_url, exc)
        self._rules[origin] = rules
        return rules

    async def allowed(self, url: str) -> bool:
        rules = await self.rules_for(url)
        return rules is None or rules.can_fetch(self._user_agent, url)

    async def crawl_delay(self, url: str) -> Optional[float]:
        rules = await self.rules_for(url)
        return None if rules is None else rules.crawl_delay(self._user_agent)
