# === FILE: kb_scout/crawler/crawler.py ===
"""
Breadth-first crawl loop.

One coordinator (:meth:`AsyncCrawler.crawl`) owns the frontier, the
visited set, the content hashes, the per-host accepted credentials and the
result aggregator. Fetching, authentication and extraction run in worker
tasks that only return an :class:`_Outcome`; the coordinator consumes
completions with ``asyncio.wait(FIRST_COMPLETED)``.
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Deque, Dict, Mapping, Optional, Set

from aiohttp import ClientSession, ClientTimeout

from kb_scout.aggregator import CrawlResult, ResultAggregator
from kb_scout.config import CrawlOptions, EngineSettings
from kb_scout.crawler.auth import AuthResult, Authenticator, is_auth_rejection
from kb_scout.crawler.extractor import PageExtractor
from kb_scout.crawler.fetcher import DynamicRenderer, Fetcher, PolitenessScheduler
from kb_scout.crawler.models import CrawlError, FetchResponse, FrontierEntry, JobState, ScrapedPage
from kb_scout.crawler.robots import RobotsCache
from kb_scout.crawler.scope import UrlScope
from kb_scout.errors import AuthFailure, ExtractError, FetchError
from kb_scout.logger import logger
from kb_scout.utils import extract_domain, normalize_url

__all__ = ("AsyncCrawler",)

ProgressCallback = Callable[[CrawlResult], None]


@dataclass(slots=True)
class _Outcome:
    """What a worker hands back to the coordinator for one frontier entry."""

    entry: FrontierEntry
    page: Optional[ScrapedPage] = None
    error: Optional[CrawlError] = None
    accepted: Optional[AuthResult] = None
    auth_failed: bool = False
    final_url: Optional[str] = None


class AsyncCrawler:
    """Bounded-concurrency BFS crawler for one job.

    Use as an async context manager::

        async with AsyncCrawler(url, options, settings) as crawler:
            result = await crawler.crawl()
    """

    def __init__(
        self,
        base_url: str,
        options: CrawlOptions,
        settings: Optional[EngineSettings] = None,
        *,
        renderer: Optional[DynamicRenderer] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
        session: Optional[ClientSession] = None,
    ) -> None:
        self.base_url = base_url
        self.options = options
        self.settings = settings or EngineSettings()
        self.renderer = renderer
        self.cancel_event = cancel_event or asyncio.Event()
        self.on_progress = on_progress
        self.session = session
        self._owns_session = session is None

        self.scope = UrlScope(base_url, options.include_patterns, options.exclude_patterns)
        self.extractor = PageExtractor(
            self.settings.max_content_length,
            content_priority=options.content_priority,
            exclude_elements=options.exclude_elements,
        )
        self.aggregator = ResultAggregator(base_url)
        self.scheduler = PolitenessScheduler()

        self.frontier: Deque[FrontierEntry] = deque()
        self.visited: Set[str] = set()
        self.queued: Set[str] = set()
        self.content_hashes: Set[str] = set()
        self.host_auth: Dict[str, AuthResult] = {}
        self.dispatched = 0
        self.status = JobState.PENDING

        self.fetcher: Optional[Fetcher] = None
        self.robots: Optional[RobotsCache] = None
        self.authenticator: Optional[Authenticator] = None

    async def __aenter__(self) -> AsyncCrawler:
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=self.settings.request_timeout),
                headers={"User-Agent": self.settings.user_agent},
                raise_for_status=False,
            )
        self.fetcher = Fetcher(
            self.session,
            retry_times=self.settings.retry_times,
            retry_backoff=self.settings.retry_backoff,
        )
        self.robots = RobotsCache(self.fetcher, self.settings.user_agent)
        self.authenticator = Authenticator(self.fetcher)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def snapshot(self) -> CrawlResult:
        return self.aggregator.snapshot(self.status)

    # ------------------------------------------------------------------ #
    # Coordinator                                                        #
    # ------------------------------------------------------------------ #

    async def crawl(self) -> CrawlResult:
        if self.fetcher is None:
            raise RuntimeError("Session not initialized; use 'async with AsyncCrawler(...)'")
        if self.status is not JobState.PENDING:
            raise RuntimeError(f"Crawl already {self.status.value}")

        loop = asyncio.get_running_loop()
        job_timeout = self.settings.job_timeout
        deadline = loop.time() + job_timeout if job_timeout else None
        start = time.monotonic()

        self.status = JobState.RUNNING
        logger.info(
            "Starting crawl: %s (depth ≤ %d, pages ≤ %d, template %s)",
            self.base_url,
            self.options.max_depth,
            self.options.max_pages,
            self.options.template_id or "-",
        )
        root = normalize_url(self.base_url)
        self.frontier.append(FrontierEntry(root, 0))
        self.queued.add(root)

        in_flight: Dict[asyncio.Task[_Outcome], FrontierEntry] = {}
        cancel_waiter = asyncio.create_task(self.cancel_event.wait())
        stopped_early = False
        try:
            while True:
                if self.cancelled:
                    stopped_early = True
                    break
                if deadline is not None and loop.time() >= deadline:
                    logger.warning("Job timeout of %.1f s reached for %s", job_timeout, self.base_url)
                    stopped_early = True
                    break

                await self._dispatch(in_flight)
                if not in_flight:
                    break

                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    set(in_flight) | {cancel_waiter},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    in_flight.pop(task)
                    self._handle(task.result())

            if in_flight:
                await self._drain(in_flight)
        except Exception:
            self.status = JobState.FAILED
            logger.exception("Crawl of %s failed", self.base_url)
            raise
        finally:
            cancel_waiter.cancel()
            for task in in_flight:
                task.cancel()
            await asyncio.gather(cancel_waiter, *in_flight, return_exceptions=True)

        self.status = JobState.CANCELLED if stopped_early else JobState.COMPLETED
        result = self.aggregator.finalize(self.status)
        duration = time.monotonic() - start
        logger.info(
            "Finished %s: %d pages, %d errors, %d duplicates in %.2f s",
            self.status.value,
            result.summary.successful_pages,
            result.summary.failed_pages,
            result.summary.duplicate_pages,
            duration,
        )
        return result

    async def _dispatch(self, in_flight: Dict[asyncio.Task[_Outcome], FrontierEntry]) -> None:
        """Move admitted frontier entries into worker tasks while capacity and budget allow."""
        while (
            self.frontier
            and len(in_flight) < self.settings.concurrency
            and self.dispatched < self.options.max_pages
            and not self.cancelled
        ):
            entry = self.frontier.popleft()
            if not await self._admit(entry):
                continue
            self.visited.add(entry.url)
            entry = replace(entry, sequence=self.dispatched)
            self.dispatched += 1

            host = extract_domain(entry.url)
            interval = self.options.delay_ms / 1000
            if self.options.respect_robots:
                crawl_delay = await self.robots.crawl_delay(entry.url)  # type: ignore[union-attr]
                if crawl_delay:
                    interval = max(interval, crawl_delay)
            slot = self.scheduler.reserve(host, interval)

            task = asyncio.create_task(self._process(entry, slot, self.host_auth.get(host)))
            in_flight[task] = entry
            logger.debug("Dispatched #%d %s (depth %d)", entry.sequence, entry.url, entry.depth)

    async def _admit(self, entry: FrontierEntry) -> bool:
        if entry.url in self.visited:
            return False
        if entry.depth > self.options.max_depth:
            return False
        admitted, reason = self.scope.check(entry.url)
        if not admitted:
            logger.debug("Skipping %s: %s", entry.url, reason)
            return False
        if self.options.respect_robots and not await self.robots.allowed(entry.url):  # type: ignore[union-attr]
            logger.info("Blocked by robots.txt: %s", entry.url)
            self.aggregator.record_skip(entry.url)
            return False
        return True

    async def _drain(self, in_flight: Dict[asyncio.Task[_Outcome], FrontierEntry]) -> None:
        """Let in-flight fetches finish for up to one request timeout, then abort them."""
        logger.info("Stopping: waiting for %d in-flight fetches", len(in_flight))
        done, pending = await asyncio.wait(set(in_flight), timeout=self.settings.request_timeout)
        for task in done:
            in_flight.pop(task)
            self._handle(task.result())
        if pending:
            logger.warning("Aborting %d unfinished fetches", len(pending))

    def _handle(self, outcome: _Outcome) -> None:
        entry = outcome.entry
        if outcome.accepted is not None:
            self.host_auth[extract_domain(entry.url)] = outcome.accepted
            self.aggregator.record_auth(outcome.accepted.family)
        if outcome.auth_failed:
            self.aggregator.record_auth("failed")
        if outcome.final_url:
            self.visited.add(normalize_url(outcome.final_url))

        if outcome.error is not None:
            logger.warning("Failed %s: %s", entry.url, outcome.error.error)
            self.aggregator.record(error=outcome.error, sequence=entry.sequence)
        elif outcome.page is not None:
            page = outcome.page
            if page.content_hash in self.content_hashes:
                logger.debug("Duplicate content at %s", entry.url)
                self.aggregator.record_duplicate(entry.url)
            else:
                self.content_hashes.add(page.content_hash)
                self.aggregator.record(page=page, sequence=entry.sequence)
            # duplicates still contribute their links
            self._enqueue_links(entry, page)

        if self.on_progress is not None:
            self.on_progress(self.aggregator.snapshot(self.status))

    def _enqueue_links(self, entry: FrontierEntry, page: ScrapedPage) -> None:
        if entry.depth >= self.options.max_depth:
            return
        for link in page.metadata.links:
            key = normalize_url(link)
            if key in self.visited or key in self.queued:
                continue
            if not self.scope.host_in_scope(key):
                continue
            self.queued.add(key)
            self.frontier.append(FrontierEntry(key, entry.depth + 1, parent_url=entry.url))

    # ------------------------------------------------------------------ #
    # Worker                                                             #
    # ------------------------------------------------------------------ #

    async def _process(self, entry: FrontierEntry, slot: float, known_auth: Optional[AuthResult]) -> _Outcome:
        await self.scheduler.wait_for(slot)
        url = entry.url
        used_auth = known_auth
        accepted: Optional[AuthResult] = None
        try:
            resp = await self._get(url, known_auth.headers if known_auth else {})
            if is_auth_rejection(resp):
                status = resp.status if resp.status in (401, 403) else None
                try:
                    accepted = await self.authenticator.attempt_auth(  # type: ignore[union-attr]
                        url, self.options.auth_config, status=status
                    )
                except AuthFailure as exc:
                    return _Outcome(
                        entry,
                        error=CrawlError(
                            url,
                            str(exc),
                            needs_credentials=exc.needs_credentials,
                            login_method=exc.login_method,
                        ),
                        auth_failed=exc.login_method != "unknown",
                    )
                used_auth = accepted
                resp = await self._get(url, accepted.headers)
                if is_auth_rejection(resp):
                    return _Outcome(
                        entry,
                        error=CrawlError(
                            url,
                            f"Authenticated with {accepted.method} but still rejected (HTTP {resp.status})",
                            needs_credentials=True,
                            login_method=accepted.method,
                        ),
                        accepted=accepted,
                    )
            if not resp.ok:
                raise FetchError(url, f"HTTP {resp.status}", status=resp.status)
            page = self.extractor.extract(
                resp,
                entry.depth,
                entry.parent_url,
                used_auth.method if used_auth else None,
            )
        except (FetchError, ExtractError) as exc:
            return _Outcome(entry, error=CrawlError(url, str(exc)), accepted=accepted)
        return _Outcome(
            entry,
            page=page,
            accepted=accepted,
            final_url=resp.final_url if resp.redirected else None,
        )

    async def _get(self, url: str, headers: Mapping[str, str]) -> FetchResponse:
        if self.options.wait_for_dynamic:
            if self.renderer is not None:
                return await self.renderer.render(url, headers)
            logger.debug("No dynamic renderer configured; fetching %s statically", url)
        return await self.fetcher.fetch(url, headers)  # type: ignore[union-attr]
