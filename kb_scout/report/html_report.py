# File: kb_scout/report/html_report.py
"""kb_scout.report.html_report: HTML report of a crawl rendered with Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from kb_scout.aggregator import CrawlResult
from kb_scout.crawler.auth import credential_hint

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


def render_html(
    result: CrawlResult,
    output_path: Union[Path, str],
    template_dir: Optional[Union[Path, str]] = None,
) -> Path:
    """Render ``report.html.j2`` for *result* and save it.

    Args:
        result: finished or partial crawl result.
        output_path: path of the HTML file.
        template_dir: directory holding ``report.html.j2``; the packaged
            template is used by default.

    Returns:
        Path of the saved HTML file.
    """
    template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    template = env.get_template("report.html.j2")

    context: dict[str, Any] = {
        "result": result,
        "summary": result.summary,
        "pages": result.pages,
        "errors": result.summary.errors,
        "hints": {e.url: credential_hint(e.url) for e in result.credential_errors},
    }

    output_path.write_text(template.render(**context), encoding="utf-8")
    return output_path
