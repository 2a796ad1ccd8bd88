# File: kb_scout/report/__init__.py
"""kb_scout.report: JSON and HTML reports of a crawl, used by the CLI and tests."""

from kb_scout.report.html_report import render_html
from kb_scout.report.json_report import render_json

__all__ = ["render_json", "render_html"]
