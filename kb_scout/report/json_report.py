# kb_scout/report/json_report.py

"""
JSON report of a crawl: the serialized :class:`CrawlResult`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Union

from kb_scout.aggregator import CrawlResult


def render_json(result: CrawlResult, output_path: Union[Path, str], *, pretty: bool = True) -> Path:
    """
    Save *result* as JSON at *output_path* and return the path.

    Example:
    ```python
    from kb_scout.report.json_report import render_json
    report_path = render_json(result, 'reports/crawl.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(result.json(pretty=pretty), encoding="utf-8")
    return output
