# File: tests/test_imports.py
import subprocess
import sys

import pytest


@pytest.mark.parametrize(
    "module",
    [
        "kb_scout",
        "kb_scout.crawler",
        "kb_scout.aggregator",
        "kb_scout.crawler.crawler",
        "kb_scout.report",
        "kb_scout.cli",
    ],
)
def test_module_imports_in_fresh_interpreter(module):
    proc = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr
