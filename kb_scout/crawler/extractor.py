# kb_scout/crawler/extractor.py
"""
HTML → :class:`ScrapedPage` extraction.

Links, images and headings are taken from the whole document; the page
content comes from the first content-priority selector that holds real
text, after the excluded elements were removed.
"""
from __future__ import annotations

import hashlib
import re
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, ParserRejectedMarkup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from kb_scout.config import DEFAULT_CONTENT_PRIORITY, DEFAULT_EXCLUDE_ELEMENTS
from kb_scout.crawler.models import FetchResponse, PageMetadata, ScrapedPage
from kb_scout.errors import ExtractError
from kb_scout.logger import logger
from kb_scout.utils import extract_domain, is_http_url, remove_duplicates, strip_fragment

__all__ = ("PageExtractor", "content_hash", "collapse_whitespace")

_BS_PARSER = "lxml"
_MIN_PRIORITY_TEXT = 100
_SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")
_WS_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def content_hash(content: str) -> str:
    """sha256 hex digest of the whitespace-normalized content."""
    return hashlib.sha256(collapse_whitespace(content).encode("utf-8")).hexdigest()


def _attr(tag: Optional[Tag], name: str) -> Optional[str]:
    if tag is None:
        return None
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if not value:
        return None
    value = value.strip()
    return value or None


def _first_meta(soup: BeautifulSoup, *queries: dict) -> Optional[str]:
    for attrs in queries:
        value = _attr(soup.find("meta", attrs=attrs), "content")
        if value:
            return value
    return None


class PageExtractor:
    """Turns fetched HTML into pages for one crawl job."""

    def __init__(
        self,
        max_content_length: int = 50_000,
        *,
        content_priority: Sequence[str] = DEFAULT_CONTENT_PRIORITY,
        exclude_elements: Sequence[str] = DEFAULT_EXCLUDE_ELEMENTS,
    ) -> None:
        self.max_content_length = max_content_length
        self.content_priority = tuple(content_priority)
        self.exclude_elements = tuple(exclude_elements)

    def extract(
        self,
        response: FetchResponse,
        depth: int,
        parent_url: Optional[str] = None,
        auth_method: Optional[str] = None,
    ) -> ScrapedPage:
        """Parse *response* into a page; raises :class:`ExtractError`."""
        url = response.url
        if response.content_type and not response.is_html:
            raise ExtractError(url, f"Unsupported content type: {response.content_type}")
        if not response.body.strip():
            raise ExtractError(url, "Empty response body")
        try:
            soup = BeautifulSoup(response.body, _BS_PARSER)
        except ParserRejectedMarkup as exc:
            raise ExtractError(url, f"Unparseable HTML: {exc}") from exc

        base = response.final_url or url
        base_tag = soup.find("base", href=True)
        if isinstance(base_tag, Tag) and _attr(base_tag, "href"):
            base = urljoin(base, _attr(base_tag, "href"))

        domain = extract_domain(url)
        title = self._title(soup) or domain
        links = self._links(soup, base)
        images = self._images(soup, base)
        headings = self._headings(soup)
        meta = self._meta(soup, response)

        full_text = self._content(soup)
        metadata = PageMetadata(
            domain=domain,
            links=tuple(links),
            images=tuple(images),
            headings=tuple(headings),
            word_count=len(full_text.split()),
            depth=depth,
            parent_url=parent_url,
            content_type=response.content_type or None,
            auth_method=auth_method,
            **meta,
        )
        return ScrapedPage(
            url=url,
            title=title,
            content=full_text[: self.max_content_length],
            content_hash=content_hash(full_text),
            metadata=metadata,
        )

    # ------------------------------------------------------------------ #
    # Document parts                                                     #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _title(soup: BeautifulSoup) -> str:
        if soup.title is not None:
            text = collapse_whitespace(soup.title.get_text())
            if text:
                return text
        h1 = soup.find("h1")
        if h1 is not None:
            return collapse_whitespace(h1.get_text(" "))
        return ""

    @staticmethod
    def _links(soup: BeautifulSoup, base: str) -> List[str]:
        links: List[str] = []
        for tag in soup.find_all("a", href=True):
            href = _attr(tag, "href")
            if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
                continue
            absolute = strip_fragment(urljoin(base, href))
            if is_http_url(absolute):
                links.append(absolute)
        return remove_duplicates(links)

    @staticmethod
    def _images(soup: BeautifulSoup, base: str) -> List[str]:
        images: List[str] = []
        for tag in soup.find_all("img"):
            src = _attr(tag, "src") or _attr(tag, "data-src") or _attr(tag, "data-lazy-src")
            if not src:
                continue
            absolute = urljoin(base, src)
            if is_http_url(absolute):
                images.append(absolute)
        return remove_duplicates(images)

    @staticmethod
    def _headings(soup: BeautifulSoup) -> List[str]:
        headings = []
        for tag in soup.find_all(["h1", "h2", "h3"]):
            text = collapse_whitespace(tag.get_text(" "))
            if text:
                headings.append(text)
        return headings

    @staticmethod
    def _meta(soup: BeautifulSoup, response: FetchResponse) -> dict:
        description = _first_meta(
            soup,
            {"name": "description"},
            {"property": "og:description"},
            {"name": "twitter:description"},
            {"property": "article:description"},
        )
        keywords = _first_meta(soup, {"name": "keywords"}, {"property": "article:tag"})
        author = _first_meta(
            soup,
            {"name": "author"},
            {"property": "article:author"},
            {"name": "twitter:creator"},
        )
        if author is None:
            rel_author = soup.find(attrs={"rel": "author"})
            if rel_author is not None:
                author = collapse_whitespace(rel_author.get_text(" ")) or None
        published = _first_meta(
            soup,
            {"property": "article:published_time"},
            {"name": "date"},
        )
        if published is None:
            published = _attr(soup.find("time", attrs={"datetime": True}), "datetime")
        if published is None:
            published = _first_meta(soup, {"property": "og:updated_time"})

        language = _attr(soup.find("html"), "lang") or _first_meta(
            soup,
            {"http-equiv": re.compile("^content-language$", re.I)},
            {"name": "language"},
        )
        if language is None:
            language = next(
                (v.strip() for k, v in response.headers.items() if k.lower() == "content-language" and v.strip()),
                None,
            )
        return {
            "description": description,
            "keywords": keywords,
            "author": author,
            "published_date": published,
            "language": language,
        }

    def _content(self, soup: BeautifulSoup) -> str:
        for tag in self._select(soup, self.exclude_elements):
            if not tag.decomposed:
                tag.decompose()
        for selector in self.content_priority:
            matches = self._select(soup, (selector,))
            text = collapse_whitespace(" ".join(el.get_text(" ") for el in matches))
            if len(text) > _MIN_PRIORITY_TEXT:
                return text
        body = soup.body or soup
        return collapse_whitespace(body.get_text(" "))

    @staticmethod
    def _select(soup: BeautifulSoup, selectors: Iterable[str]) -> List[Tag]:
        found: List[Tag] = []
        for selector in selectors:
            try:
                found.extend(soup.select(selector))
            except SelectorSyntaxError as exc:
                logger.warning("Ignoring invalid CSS selector %r: %s", selector, exc)
        return found
