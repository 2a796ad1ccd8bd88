# kb_scout/crawler/fetcher.py
"""
Fetcher module: HTTP requests with retry/backoff and timeout, per-host
politeness slots, and the hook for an external dynamic-page renderer.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

from aiohttp import ClientError, ClientResponse, ClientSession

from kb_scout.crawler.models import HTML_MIME_TYPES, FetchResponse
from kb_scout.errors import FetchError
from kb_scout.logger import logger

__all__ = ("Fetcher", "PolitenessScheduler", "DynamicRenderer")

RETRY_STATUS: Sequence[int] = tuple(range(500, 600)) + (429,)


@runtime_checkable
class DynamicRenderer(Protocol):
    """Heavy renderer (headless browser) for pages flagged ``wait_for_dynamic``.

    Implementations live outside this package; the crawler only decides
    whether a page is routed here.
    """

    async def render(self, url: str, headers: Mapping[str, str]) -> FetchResponse:
        ...


class Fetcher:
    """Handles HTTP fetching with retries/backoff and per-request timeout.

    The timeout itself is configured on the ``ClientSession``.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        retry_times: int = 0,
        retry_backoff: float = 1.0,
        retry_status: Sequence[int] = RETRY_STATUS,
    ) -> None:
        self.session = session
        self.retry_times = retry_times
        self.retry_backoff = retry_backoff
        self._retry_status = retry_status

    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        *,
        method: str = "GET",
        read_any: bool = False,
    ) -> FetchResponse:
        """
        Request *url* following redirects.

        Returns a FetchResponse for every HTTP status (the caller classifies
        it); raises FetchError on network errors, timeouts and exhausted
        retries. The body is read for HTML responses, or always with *read_any*.
        """
        attempts = 0
        while True:
            try:
                async with self.session.request(
                    method, url, headers=dict(headers or {}), allow_redirects=True
                ) as resp:
                    if resp.status not in self._retry_status or attempts >= self.retry_times:
                        return await self._to_response(url, resp, method, read_any)
                    reason = f"HTTP {resp.status}"
            except asyncio.TimeoutError as exc:
                # no retry on timeout
                raise FetchError(url, f"Timed out fetching {url}") from exc
            except ClientError as exc:
                if attempts >= self.retry_times:
                    raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
                reason = type(exc).__name__
            attempts += 1
            # exponential backoff, cap at 60s
            backoff = min(60.0, self.retry_backoff * 2 ** (attempts - 1))
            logger.debug("Retry %d/%d for %s after %.2f s (%s)", attempts, self.retry_times, url, backoff, reason)
            await asyncio.sleep(backoff)

    async def probe(self, url: str, headers: Mapping[str, str]) -> FetchResponse:
        """Cheap validation request: HEAD, falling back to GET when HEAD is not supported."""
        resp = await self.fetch(url, headers, method="HEAD")
        if resp.status in (405, 501):
            resp = await self.fetch(url, headers, method="GET")
        return resp

    @staticmethod
    async def _to_response(url: str, resp: ClientResponse, method: str, read_any: bool) -> FetchResponse:
        headers = {k: v for k, v in resp.headers.items()}
        mime = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
        body = ""
        if method != "HEAD" and (read_any or not mime or mime in HTML_MIME_TYPES):
            raw = await resp.read()
            charset = resp.charset or "utf-8"
            try:
                body = raw.decode(charset, errors="replace")
            except LookupError:
                body = raw.decode("utf-8", errors="replace")
        return FetchResponse(
            url=url,
            final_url=str(resp.url),
            status=resp.status,
            headers=headers,
            body=body,
            redirected=bool(resp.history),
        )


class PolitenessScheduler:
    """Hands out per-host request slots spaced by the politeness interval.

    Hosts are independent: a slow host never delays another one. Owned by
    the crawl coordinator; workers only sleep until their slot.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._next_slot: Dict[str, float] = {}

    def reserve(self, host: str, interval: float) -> float:
        now = self._clock()
        slot = max(now, self._next_slot.get(host, now))
        self._next_slot[host] = slot + max(0.0, interval)
        return slot

    async def wait_for(self, slot: float) -> None:
        delay = slot - self._clock()
        if delay > 0:
            await asyncio.sleep(delay)
