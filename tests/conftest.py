# File: tests/conftest.py
from __future__ import annotations

from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Union

import pytest
import pytest_asyncio
from aiohttp import web

from kb_scout.config import CrawlOptions, EngineSettings
from kb_scout.crawler.models import FetchResponse

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]
PageSpec = Union[str, Handler]


def pytest_configure(config):
    """Register custom markers so that `--strict-markers` does not fail."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


def html_handler(body: str) -> Handler:
    async def handle(_: web.Request) -> web.Response:
        return web.Response(text=body, content_type="text/html")

    return handle


@pytest_asyncio.fixture
async def serve(unused_tcp_port_factory) -> Callable[[web.Application], Awaitable[str]]:
    """Start aiohttp applications on free ports; yields a factory returning base URLs."""
    runners: List[web.AppRunner] = []

    async def _serve(app: web.Application) -> str:
        runner = web.AppRunner(app)
        await runner.setup()
        port = unused_tcp_port_factory()
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()
        runners.append(runner)
        return f"http://127.0.0.1:{port}"

    yield _serve
    for runner in runners:
        await runner.cleanup()


@pytest_asyncio.fixture
async def site(serve):
    """Serve a mapping of path → HTML text (or handler). Optional robots.txt text."""
    hits: Dict[str, int] = {}

    async def _site(pages: Mapping[str, PageSpec], robots: Optional[str] = None) -> str:
        app = web.Application()

        @web.middleware
        async def count_hits(request: web.Request, handler):
            if request.method == "GET":
                hits[request.path] = hits.get(request.path, 0) + 1
            return await handler(request)

        app.middlewares.append(count_hits)
        for path, spec in pages.items():
            app.router.add_get(path, html_handler(spec) if isinstance(spec, str) else spec)
        if robots is not None:
            async def handle_robots(_):
                return web.Response(text=robots, content_type="text/plain")

            app.router.add_get("/robots.txt", handle_robots)
        return await serve(app)

    _site.hits = hits  # type: ignore[attr-defined]
    return _site


@pytest.fixture()
def settings() -> EngineSettings:
    return EngineSettings(user_agent="TestAgent/1.0", request_timeout=5.0, concurrency=4)


@pytest.fixture()
def fast_options() -> CrawlOptions:
    """No politeness delay so local crawls finish quickly."""
    return CrawlOptions(max_depth=3, max_pages=50, delay_ms=0)


def make_response(
    body: str,
    url: str = "http://example.com/page",
    *,
    content_type: str = "text/html; charset=utf-8",
    status: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> FetchResponse:
    all_headers = {"Content-Type": content_type} if content_type else {}
    all_headers.update(headers or {})
    return FetchResponse(url=url, final_url=url, status=status, headers=all_headers, body=body)


@pytest.fixture()
def response_factory():
    return make_response
