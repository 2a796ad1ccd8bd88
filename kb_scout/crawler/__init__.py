"""Crawler package: fetching, authentication, scope, robots and extraction.

The crawl loop itself lives in :mod:`kb_scout.crawler.crawler`; it depends on
:mod:`kb_scout.aggregator`, which in turn imports the models below, so it is
not re-exported here.
"""

from kb_scout.crawler.fetcher import DynamicRenderer
from kb_scout.crawler.models import CrawlError, FetchResponse, FrontierEntry, JobState, ScrapedPage

__all__ = (
    "DynamicRenderer",
    "CrawlError",
    "FetchResponse",
    "FrontierEntry",
    "JobState",
    "ScrapedPage",
)
