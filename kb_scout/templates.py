# File: kb_scout/templates.py
"""kb_scout.templates: crawl templates and the resolver that turns a selection into CrawlOptions.

A template is a named, read-only bundle of crawl options. Behaviour
differences between categories are data, not code paths: the resolver
only looks templates up, scores URLs against a keyword table and merges
overrides.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from kb_scout.config import (
    DEFAULT_CONTENT_PRIORITY,
    DEFAULT_EXCLUDE_ELEMENTS,
    CrawlOptions,
    CrawlOverrides,
    read_document,
)
from kb_scout.errors import NotFoundError, ValidationError
from kb_scout.logger import logger
from kb_scout.utils import split_patterns

__all__: Sequence[str] = (
    "Category",
    "CrawlTemplate",
    "BUILTIN_TEMPLATES",
    "DEFAULT_TEMPLATE",
    "TemplateRegistry",
    "create_custom_template",
    "get_template",
    "load_templates",
    "parse_patterns",
    "resolve",
)


class Category(str, Enum):
    DOCUMENTATION = "documentation"
    CORPORATE = "corporate"
    NEWS = "news"
    BLOG = "blog"
    WIKI = "wiki"
    ECOMMERCE = "ecommerce"
    SOCIAL = "social"
    CUSTOM = "custom"


class UrlPatterns(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()


class TemplateCrawlOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_depth: int = Field(3, ge=0)
    max_pages: int = Field(50, ge=1)
    wait_for_dynamic: bool = False


class Behaviors(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    delay_between_requests_ms: int = Field(1000, ge=0)
    respect_robots: bool = True


class Selectors(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    content_priority: Tuple[str, ...] = DEFAULT_CONTENT_PRIORITY
    exclude_elements: Tuple[str, ...] = DEFAULT_EXCLUDE_ELEMENTS


class CrawlTemplate(BaseModel):
    """Immutable named bundle of crawl options."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    category: Category
    url_patterns: UrlPatterns = UrlPatterns()
    crawl_options: TemplateCrawlOptions = TemplateCrawlOptions()
    behaviors: Behaviors = Behaviors()
    selectors: Selectors = Selectors()

    def to_options(self) -> CrawlOptions:
        return CrawlOptions(
            max_depth=self.crawl_options.max_depth,
            max_pages=self.crawl_options.max_pages,
            include_patterns=self.url_patterns.include,
            exclude_patterns=self.url_patterns.exclude,
            delay_ms=self.behaviors.delay_between_requests_ms,
            respect_robots=self.behaviors.respect_robots,
            wait_for_dynamic=self.crawl_options.wait_for_dynamic,
            content_priority=self.selectors.content_priority,
            exclude_elements=self.selectors.exclude_elements,
            template_id=self.id,
        )


def _template(
    id: str,
    name: str,
    category: Category,
    *,
    description: str,
    max_depth: int,
    max_pages: int,
    delay_ms: int,
    include: Tuple[str, ...] = (),
    exclude: Tuple[str, ...] = (),
    respect_robots: bool = True,
    wait_for_dynamic: bool = False,
    content_priority: Tuple[str, ...] = DEFAULT_CONTENT_PRIORITY,
    extra_excludes: Tuple[str, ...] = (),
) -> CrawlTemplate:
    return CrawlTemplate(
        id=id,
        name=name,
        description=description,
        category=category,
        url_patterns=UrlPatterns(include=include, exclude=exclude),
        crawl_options=TemplateCrawlOptions(
            max_depth=max_depth, max_pages=max_pages, wait_for_dynamic=wait_for_dynamic
        ),
        behaviors=Behaviors(delay_between_requests_ms=delay_ms, respect_robots=respect_robots),
        selectors=Selectors(
            content_priority=content_priority,
            exclude_elements=DEFAULT_EXCLUDE_ELEMENTS + extra_excludes,
        ),
    )


DEFAULT_TEMPLATE = _template(
    "general-default",
    "General Website",
    Category.CORPORATE,
    description="Balanced crawl used when no template matches the URL",
    max_depth=3,
    max_pages=50,
    delay_ms=1000,
    exclude=("logout", "signout"),
)

BUILTIN_TEMPLATES: Tuple[CrawlTemplate, ...] = (
    _template(
        "documentation-deep",
        "Documentation Deep Dive",
        Category.DOCUMENTATION,
        description="Documentation sites, APIs, guides and technical content",
        max_depth=5,
        max_pages=100,
        delay_ms=1000,
        wait_for_dynamic=True,
        include=("docs", "documentation", "guide", "api", "reference", "tutorial", "help", "manual", "wiki"),
        exclude=("login", "register", "admin", "dashboard", "profile", "settings"),
        content_priority=(
            "main", "article", ".content", ".documentation", ".docs-content", ".guide-content",
            ".api-docs", ".markdown-body", "#content", ".post-content",
        ),
        extra_excludes=(
            ".sidebar", ".navigation", ".breadcrumb", ".table-of-contents", ".search",
            ".comments", ".social-share",
        ),
    ),
    _template(
        "corporate-comprehensive",
        "Corporate Site Complete",
        Category.CORPORATE,
        description="Products, services, news and resources of a corporate website",
        max_depth=4,
        max_pages=150,
        delay_ms=2000,
        wait_for_dynamic=True,
        include=("products", "services", "solutions", "about", "news", "press", "resources", "support", "careers"),
        exclude=("login", "register", "admin", "checkout", "cart", "account"),
        content_priority=(
            "main", "article", ".content", ".page-content", ".main-content", ".hero-content",
            ".product-info", ".service-description", ".news-content", "#content",
        ),
        extra_excludes=(".cookie-banner", ".chat-widget", ".social-media", ".advertisement", ".popup", ".modal"),
    ),
    _template(
        "news-blog-aggressive",
        "News & Blog",
        Category.NEWS,
        description="News sites and blogs with article extraction",
        max_depth=3,
        max_pages=200,
        delay_ms=800,
        wait_for_dynamic=True,
        include=("article", "post", "news", "blog", "story", "category", "tag"),
        exclude=("login", "register", "subscribe", "newsletter", "admin"),
        content_priority=(
            "article", ".article-content", ".post-content", ".entry-content", ".news-content",
            ".blog-content", "main", ".content",
        ),
        extra_excludes=(
            ".sidebar", ".comments", ".social-share", ".related-articles", ".advertisement",
            ".newsletter-signup",
        ),
    ),
    _template(
        "ecommerce-catalog",
        "E-commerce Catalog",
        Category.ECOMMERCE,
        description="Product catalogues, categories and collections",
        max_depth=4,
        max_pages=300,
        delay_ms=1500,
        wait_for_dynamic=True,
        include=("product", "item", "catalog", "category", "shop", "store", "collection"),
        exclude=("cart", "checkout", "payment", "account", "login", "register"),
        content_priority=(
            ".product-details", ".product-info", ".product-description", "main", "article", ".content",
        ),
        extra_excludes=(".reviews-widget", ".recommendations", ".advertisement", ".cookie-banner"),
    ),
    _template(
        "wiki-knowledge",
        "Wiki Knowledge Base",
        Category.WIKI,
        description="Wikis and knowledge bases with cross-references",
        max_depth=6,
        max_pages=500,
        delay_ms=500,
        include=("wiki", "page", "article", "entry", "topic", "category"),
        exclude=("talk", "user", "special", "help", "template"),
        content_priority=(
            ".mw-content-text", ".wiki-content", "#content", "main", "article", ".page-content",
            ".entry-content",
        ),
        extra_excludes=(".mw-editsection", ".navbox", ".sidebar", ".toc"),
    ),
    _template(
        "social-platform",
        "Social Platform",
        Category.SOCIAL,
        description="Forums, communities and public discussion threads",
        max_depth=3,
        max_pages=100,
        delay_ms=2000,
        wait_for_dynamic=True,
        include=("post", "status", "profile", "user", "topic", "discussion", "thread"),
        exclude=("login", "register", "settings", "private", "admin"),
        content_priority=(".post-content", ".thread-content", ".message-body", "article", "main"),
        extra_excludes=(".sidebar", ".advertisement", ".signup-prompt"),
    ),
    _template(
        "custom-aggressive",
        "Custom Aggressive",
        Category.CUSTOM,
        description="Maximum depth crawl for unknown sites, use with caution",
        max_depth=8,
        max_pages=1000,
        delay_ms=3000,
        respect_robots=False,
        wait_for_dynamic=True,
        include=("*",),
        exclude=("javascript:", "mailto:", "tel:", "data:"),
        content_priority=DEFAULT_CONTENT_PRIORITY + ("body",),
        extra_excludes=(".advertisement", ".popup", ".modal", ".cookie-banner"),
    ),
)

# (template id, host keywords, path keywords); order breaks score ties.
_HEURISTICS: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    (
        "documentation-deep",
        ("docs", "documentation", "developer", "devdocs"),
        ("/docs/", "/documentation/", "/wiki/", "/guide/", "/reference/", "/api/", "/manual/"),
    ),
    (
        "wiki-knowledge",
        ("wiki", "wikipedia", "confluence"),
        ("/display/", "/spaces/"),
    ),
    (
        "ecommerce-catalog",
        ("shop", "store", "amazon", "ebay", "etsy", "shopify"),
        ("/shop", "/cart", "/product/", "/products/", "/catalog/", "/collections/"),
    ),
    (
        "news-blog-aggressive",
        ("news", "blog"),
        ("/blog/", "/news/", "/article/", "/articles/", "/post/", "/posts/"),
    ),
    (
        "social-platform",
        ("reddit", "forum", "community", "discord", "discourse"),
        ("/forum/", "/community/", "/thread/", "/discussion/"),
    ),
    (
        "corporate-comprehensive",
        ("corp", "company", "group"),
        ("/about/", "/services/", "/solutions/", "/careers/", "/investors/", "/press/"),
    ),
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")

OverridesT = Union[CrawlOverrides, Mapping[str, Any], None]


def parse_patterns(text: Optional[str]) -> List[str]:
    """Parse comma-separated free text (``"docs, guide,/api/"``) into patterns."""
    return split_patterns(text) if text else []


def _coerce_overrides(overrides: OverridesT) -> Optional[CrawlOverrides]:
    if overrides is None or isinstance(overrides, CrawlOverrides):
        return overrides
    try:
        return CrawlOverrides.model_validate(dict(overrides))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid crawl overrides: {exc}") from exc


def _score(url: str, host_words: Iterable[str], path_words: Iterable[str]) -> int:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    path = (parsed.path or "/").lower()
    if not path.endswith("/"):
        path += "/"
    return sum(1 for w in host_words if w in host) + sum(1 for w in path_words if w in path)


class TemplateRegistry:
    """Read-only catalogue of crawl templates plus the resolution rules."""

    def __init__(
        self,
        templates: Iterable[CrawlTemplate] = BUILTIN_TEMPLATES,
        *,
        default: CrawlTemplate = DEFAULT_TEMPLATE,
    ) -> None:
        self.default = default
        self._templates: Dict[str, CrawlTemplate] = {default.id: default}
        for tpl in templates:
            if tpl.id in self._templates:
                raise ValidationError(f"Duplicate template id: {tpl.id}")
            self._templates[tpl.id] = tpl

    def __iter__(self) -> Iterator[CrawlTemplate]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def extended(self, extra: Iterable[CrawlTemplate]) -> TemplateRegistry:
        """New registry with *extra* templates appended after the current ones."""
        current = [t for t in self._templates.values() if t.id != self.default.id]
        return TemplateRegistry([*current, *extra], default=self.default)

    def get(self, template_id: str) -> CrawlTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise NotFoundError(f"Template not found: {template_id}") from None

    def by_category(self, category: Union[Category, str]) -> List[CrawlTemplate]:
        cat = Category(category)
        return [t for t in self._templates.values() if t.category is cat]

    def suggest(self, url: str) -> CrawlTemplate:
        """Best-scoring template for *url*; the default template when nothing matches."""
        best_id: Optional[str] = None
        best_score = 0
        for template_id, host_words, path_words in _HEURISTICS:
            if template_id not in self._templates:
                continue
            score = _score(url, host_words, path_words)
            if score > best_score:
                best_id, best_score = template_id, score
        return self._templates[best_id] if best_id else self.default

    def resolve(
        self,
        mode: str,
        url_or_template_id: str,
        overrides: OverridesT = None,
    ) -> CrawlOptions:
        """Produce the CrawlOptions of a job.

        ``mode`` is ``"auto"`` (``url_or_template_id`` is the start URL),
        ``"custom"`` (overrides used verbatim on top of the default
        template), ``"template"`` (``url_or_template_id`` is a template id)
        or a template id itself.
        """
        patch = _coerce_overrides(overrides)
        if mode == "custom":
            return self._resolve_custom(patch)
        if mode == "auto":
            template = self.suggest(url_or_template_id)
            logger.info("Auto-selected template %s for %s", template.id, url_or_template_id)
        elif mode == "template":
            template = self.get(url_or_template_id)
        else:
            template = self.get(mode)
        options = template.to_options()
        if patch is not None:
            options = options.model_copy(update=patch.updates())
        return options

    def _resolve_custom(self, patch: Optional[CrawlOverrides]) -> CrawlOptions:
        if patch is None:
            raise ValidationError("Custom mode requires crawl options")
        missing = [f for f in ("max_depth", "max_pages") if getattr(patch, f) is None]
        if missing:
            raise ValidationError(f"Custom mode requires {', '.join(missing)}")
        # plain CrawlOptions defaults, no template patterns or selectors
        return CrawlOptions(template_id="custom", **patch.updates())


def create_custom_template(
    name: str,
    max_depth: int,
    max_pages: int,
    include_patterns: Sequence[str] = (),
    exclude_patterns: Sequence[str] = (),
) -> CrawlTemplate:
    """Build a user template; the id is derived from *name* so it is stable."""
    slug = _SLUG_RE.sub("-", name.lower()).strip("-") or "template"
    try:
        return CrawlTemplate(
            id=f"custom-{slug}",
            name=name,
            description=f"Custom template: {name}",
            category=Category.CUSTOM,
            url_patterns=UrlPatterns(include=tuple(include_patterns), exclude=tuple(exclude_patterns)),
            crawl_options=TemplateCrawlOptions(max_depth=max_depth, max_pages=max_pages),
            behaviors=Behaviors(delay_between_requests_ms=1500, respect_robots=True),
        )
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid custom template {name!r}: {exc}") from exc


def load_templates(path: Union[str, Path]) -> List[CrawlTemplate]:
    """Read templates from a YAML/JSON document with a top-level ``templates`` list."""
    data = read_document(path)
    raw = data.get("templates", [])
    if not isinstance(raw, list):
        raise ValidationError(f"'templates' must be a list in {path}")
    try:
        templates = [CrawlTemplate.model_validate(item) for item in raw]
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid template in {path}: {exc}") from exc
    logger.debug("Loaded %d templates from %s", len(templates), path)
    return templates


_BUILTIN_REGISTRY = TemplateRegistry()


def resolve(mode: str, url_or_template_id: str, overrides: OverridesT = None) -> CrawlOptions:
    """Resolve against the built-in catalogue."""
    return _BUILTIN_REGISTRY.resolve(mode, url_or_template_id, overrides)


def get_template(template_id: str) -> CrawlTemplate:
    return _BUILTIN_REGISTRY.get(template_id)
