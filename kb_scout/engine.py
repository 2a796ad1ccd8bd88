# File: kb_scout/engine.py
"""kb_scout.engine: job lifecycle and the public entry points of the crawl engine."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, AsyncIterator, Callable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from kb_scout.aggregator import CrawlResult
from kb_scout.config import CrawlOptions, EngineSettings, Selection, load_config
from kb_scout.crawler.crawler import AsyncCrawler
from kb_scout.crawler.fetcher import DynamicRenderer
from kb_scout.crawler.models import JobState
from kb_scout.errors import ValidationError
from kb_scout.logger import logger
from kb_scout.templates import TemplateRegistry, load_templates
from kb_scout.utils import validate_start_url

__all__ = ["JobState", "CrawlJob", "Engine", "build_registry", "create_job", "start_crawl"]

SelectionT = Union[Selection, Mapping[str, Any], str, None]
ProgressCallback = Callable[[CrawlResult], None]


def build_registry(settings: EngineSettings) -> TemplateRegistry:
    """Built-in templates plus the ones from ``settings.templates_file``."""
    registry = TemplateRegistry()
    if settings.templates_file is not None:
        registry = registry.extended(load_templates(settings.templates_file))
    return registry


def _coerce_selection(selection: SelectionT) -> Selection:
    if selection is None:
        return Selection()
    if isinstance(selection, Selection):
        return selection
    if isinstance(selection, str):
        return Selection(mode=selection)
    try:
        return Selection.model_validate(dict(selection))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid selection: {exc}") from exc


def _resolve_options(url: str, selection: Selection, registry: TemplateRegistry) -> CrawlOptions:
    if selection.mode == "template":
        if not selection.template_id:
            raise ValidationError("Mode 'template' requires template_id")
        return registry.resolve("template", selection.template_id, selection.overrides)
    return registry.resolve(selection.mode, url, selection.overrides)


class CrawlJob:
    """One crawl job: resolved options, cancellation token and progress stream.

    Each job is an explicit value; the engine keeps no process-wide job state.
    """

    def __init__(
        self,
        base_url: str,
        options: CrawlOptions,
        settings: EngineSettings,
        *,
        renderer: Optional[DynamicRenderer] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.base_url = base_url
        self.options = options
        self.settings = settings
        self.renderer = renderer
        self.cancel_event = cancel_event or asyncio.Event()
        self.state = JobState.PENDING
        self.result: Optional[CrawlResult] = None
        self._on_progress = on_progress
        self._latest: Optional[CrawlResult] = None
        self._subscribers: List[asyncio.Queue[Optional[CrawlResult]]] = []

    def __repr__(self) -> str:
        return f"CrawlJob(id={self.id!r}, base_url={self.base_url!r}, state={self.state.value!r})"

    def cancel(self) -> None:
        """Stop dispatching new fetches; :meth:`run` still returns a partial result."""
        logger.info("Cancelling job %s", self.id)
        self.cancel_event.set()

    def progress(self) -> Optional[CrawlResult]:
        """Latest snapshot (the final result once the job has finished)."""
        return self._latest

    async def snapshots(self) -> AsyncIterator[CrawlResult]:
        """Stream of progress snapshots, ending with the final result."""
        if self.result is not None:
            yield self.result
            return
        queue: asyncio.Queue[Optional[CrawlResult]] = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield item
                if item.finished:
                    return
        finally:
            self._subscribers.remove(queue)

    def _publish(self, snapshot: Optional[CrawlResult]) -> None:
        if snapshot is not None:
            self._latest = snapshot
            if self._on_progress is not None:
                self._on_progress(snapshot)
        for queue in self._subscribers:
            queue.put_nowait(snapshot)

    async def run(self) -> CrawlResult:
        if self.state is not JobState.PENDING:
            raise RuntimeError(f"Job {self.id} already {self.state.value}")
        self.state = JobState.RUNNING
        logger.info("Job %s started for %s", self.id, self.base_url)
        try:
            async with AsyncCrawler(
                self.base_url,
                self.options,
                self.settings,
                renderer=self.renderer,
                cancel_event=self.cancel_event,
                on_progress=self._publish,
            ) as crawler:
                result = await crawler.crawl()
        except Exception:
            self.state = JobState.FAILED
            self._publish(None)
            raise
        self.result = result
        self.state = result.status
        self._publish(result)
        return result


def create_job(
    base_url: str,
    selection: SelectionT = None,
    *,
    settings: Optional[EngineSettings] = None,
    registry: Optional[TemplateRegistry] = None,
    renderer: Optional[DynamicRenderer] = None,
    cancel_event: Optional[asyncio.Event] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CrawlJob:
    """Validate the start URL, resolve the options and return a pending job.

    Raises :class:`ValidationError` or :class:`NotFoundError` before any fetch.
    """
    settings = settings or EngineSettings()
    url = validate_start_url(base_url, block_private_hosts=settings.block_private_hosts)
    sel = _coerce_selection(selection)
    registry = registry or build_registry(settings)
    options = _resolve_options(url, sel, registry)
    return CrawlJob(
        url,
        options,
        settings,
        renderer=renderer,
        cancel_event=cancel_event,
        on_progress=on_progress,
    )


async def start_crawl(
    base_url: str,
    selection: SelectionT = None,
    *,
    settings: Optional[EngineSettings] = None,
    registry: Optional[TemplateRegistry] = None,
    renderer: Optional[DynamicRenderer] = None,
    cancel_event: Optional[asyncio.Event] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CrawlResult:
    """Crawl *base_url* and return the (possibly partial) result.

    Per-URL failures end up in ``result.summary.errors``; only invalid job
    configuration raises.
    """
    job = create_job(
        base_url,
        selection,
        settings=settings,
        registry=registry,
        renderer=renderer,
        cancel_event=cancel_event,
        on_progress=on_progress,
    )
    return await job.run()


class Engine:
    """Facade for the CLI and scripts: settings loading and synchronous crawling."""

    @staticmethod
    def load_config(path: Optional[str]) -> EngineSettings:
        """Load settings from YAML/JSON, or the defaults."""
        return load_config(path)

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        registry: Optional[TemplateRegistry] = None,
        renderer: Optional[DynamicRenderer] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.registry = registry or build_registry(self.settings)
        self.renderer = renderer

    async def crawl_async(
        self,
        base_url: str,
        selection: SelectionT = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CrawlResult:
        return await start_crawl(
            base_url,
            selection,
            settings=self.settings,
            registry=self.registry,
            renderer=self.renderer,
            cancel_event=cancel_event,
            on_progress=on_progress,
        )

    def crawl(
        self,
        base_url: str,
        selection: SelectionT = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CrawlResult:
        """Run a crawl to completion in a fresh event loop."""
        logger.info("Starting crawl…")
        try:
            return asyncio.run(self.crawl_async(base_url, selection, on_progress=on_progress))
        except Exception as exc:
            logger.error("Crawl failed: %s", exc)
            raise
