# kb_scout/__init__.py
"""
KBScout package initializer.
Defines package version and exposes the crawl entry points.
"""
__version__ = "0.1.0"

from kb_scout.engine import CrawlJob, Engine, start_crawl  # noqa: E402
from kb_scout.templates import resolve  # noqa: E402

__all__ = ["__version__", "CrawlJob", "Engine", "start_crawl", "resolve"]
