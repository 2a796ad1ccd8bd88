# File: tests/test_cli.py
"""Tests of the command line (`kb_scout/cli.py`) with click.testing.CliRunner.
Cover the `crawl`, `templates`, `suggest`, `config` and `compare` commands,
`--version`, and error handling.
"""
import json

import pytest
from click.testing import CliRunner

import kb_scout.cli as cli_module
from kb_scout.aggregator import ResultAggregator
from kb_scout.cli import cli
from kb_scout.crawler.models import CrawlError, PageMetadata, ScrapedPage
from kb_scout.errors import ValidationError
from kb_scout.logger import init_logging


def fake_result(base_url="https://example.com/"):
    agg = ResultAggregator(base_url)
    agg.record(
        page=ScrapedPage(
            url=base_url,
            title="Example",
            content="Example content",
            content_hash="abc",
            metadata=PageMetadata(domain="example.com", word_count=2),
        ),
        sequence=0,
    )
    agg.record(
        error=CrawlError(f"{base_url}private", "Authentication required", needs_credentials=True, login_method="unknown"),
        sequence=1,
    )
    return agg.finalize()


def json_tail(output: str) -> dict:
    """The JSON document printed after the status lines."""
    return json.loads(output[output.index("{"):])


@pytest.fixture()
def crawl_calls(monkeypatch):
    """Replace start_crawl with a stub that records its arguments."""
    calls = []

    async def fake_start_crawl(url, selection=None, *, settings=None, **kwargs):
        calls.append({"url": url, "selection": selection, "settings": settings})
        return fake_result()

    monkeypatch.setattr(cli_module, "start_crawl", fake_start_crawl)
    return calls


@pytest.fixture()
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("KB_SCOUT_COOKIE", "KB_SCOUT_CONFLUENCE_TOKEN", "KB_SCOUT_BEARER_TOKEN", "KB_SCOUT_BASIC_AUTH"):
        monkeypatch.delenv(var, raising=False)
    yield CliRunner()
    # handlers bound to the runner streams must not outlive the test
    init_logging()


def test_version_option(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "KBScout" in result.output


def test_cli_group_holds_only_commands():
    assert set(cli.commands) == {"crawl", "templates", "suggest", "config", "compare"}
    for name in ("start_crawl", "render_json", "render_html"):
        assert not hasattr(cli, name)


def test_show_config(runner, tmp_path):
    cfg_file = tmp_path / "settings.yaml"
    cfg_file.write_text("user_agent: Agent/1.0\nconcurrency: 2\n", encoding="utf-8")

    result = runner.invoke(cli, ["--config", str(cfg_file), "config"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["user_agent"] == "Agent/1.0"
    assert data["concurrency"] == 2


def test_invalid_config(runner, tmp_path):
    cfg_file = tmp_path / "settings.yaml"
    cfg_file.write_text("concurrency: 0\n", encoding="utf-8")
    result = runner.invoke(cli, ["--config", str(cfg_file), "config"])
    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output


def test_crawl_stdout(runner, crawl_calls):
    result = runner.invoke(cli, ["crawl", "https://example.com/", "--max-pages", "5", "--delay-ms", "0"])
    assert result.exit_code == 0, result.output

    data = json_tail(result.output)
    assert data["base_url"] == "https://example.com/"
    assert data["summary"]["successful_pages"] == 1
    assert "Credentials needed for https://example.com/private" in result.output

    [call] = crawl_calls
    overrides = call["selection"].overrides
    assert call["selection"].mode == "auto"
    assert overrides.max_pages == 5
    assert overrides.delay_ms == 0
    assert overrides.max_depth is None


def test_crawl_credentials_from_flags(runner, crawl_calls):
    result = runner.invoke(
        cli,
        [
            "crawl", "https://example.com/",
            "--cookie", "sid=1",
            "--bearer", "tok",
            "--basic", "alice:secret",
            "--header", "X-Api-Key: k",
            "--exclude", "admin, logout",
        ],
    )
    assert result.exit_code == 0, result.output
    overrides = crawl_calls[0]["selection"].overrides
    types = [s.type for s in overrides.auth_config.strategies]
    assert types == ["session_cookie", "bearer_token", "basic_auth", "custom_headers"]
    assert overrides.exclude_patterns == ("admin", "logout")
    assert "secret" not in result.output


def test_crawl_credentials_from_environment(runner, crawl_calls, monkeypatch):
    monkeypatch.setenv("KB_SCOUT_BEARER_TOKEN", "from-env")
    result = runner.invoke(cli, ["crawl", "https://example.com/"])
    assert result.exit_code == 0, result.output
    [strategy] = crawl_calls[0]["selection"].overrides.auth_config.strategies
    assert strategy.token.get_secret_value() == "from-env"


def test_crawl_auth_file(runner, crawl_calls, tmp_path):
    auth_file = tmp_path / "auth.yaml"
    auth_file.write_text(
        "strategies:\n"
        "  - type: bearer_token\n"
        "    token: first\n"
        "  - type: session_cookie\n"
        "    cookie_header: sid=2\n",
        encoding="utf-8",
    )
    result = runner.invoke(cli, ["crawl", "https://example.com/", "--auth-file", str(auth_file)])
    assert result.exit_code == 0, result.output
    types = [s.type for s in crawl_calls[0]["selection"].overrides.auth_config.strategies]
    assert types == ["bearer_token", "session_cookie"]


def test_crawl_confluence_needs_both_flags(runner, crawl_calls):
    result = runner.invoke(cli, ["crawl", "https://example.com/", "--confluence-token", "t"])
    assert result.exit_code != 0
    assert crawl_calls == []


def test_crawl_invalid_basic(runner, crawl_calls):
    result = runner.invoke(cli, ["crawl", "https://example.com/", "--basic", "no-colon"])
    assert result.exit_code != 0
    assert crawl_calls == []


def test_crawl_json_and_html(runner, crawl_calls, tmp_path):
    json_out = tmp_path / "out" / "crawl.json"
    html_out = tmp_path / "out" / "crawl.html"
    result = runner.invoke(
        cli,
        ["crawl", "https://example.com/", "--json", str(json_out), "--html", str(html_out), "--pretty"],
    )
    assert result.exit_code == 0, result.output
    assert f"JSON report: {json_out}" in result.output
    assert f"HTML report: {html_out}" in result.output

    saved = json.loads(json_out.read_text(encoding="utf-8"))
    assert saved["pages"][0]["title"] == "Example"
    html = html_out.read_text(encoding="utf-8")
    assert "Crawl of https://example.com/" in html
    assert "https://example.com/private" in html


def test_crawl_error_exit(runner, monkeypatch):
    async def failing(url, selection=None, **kwargs):
        raise ValidationError(f"Invalid URL format: {url}")

    monkeypatch.setattr(cli_module, "start_crawl", failing)
    result = runner.invoke(cli, ["crawl", "https://"])
    assert result.exit_code == 1
    assert "Crawl failed: Invalid URL format" in result.output


def test_crawl_invalid_mode_options(runner, crawl_calls):
    result = runner.invoke(cli, ["crawl", "https://example.com/", "--mode", ""])
    assert result.exit_code == 1
    assert "Invalid crawl options" in result.output
    assert crawl_calls == []


def test_templates(runner):
    result = runner.invoke(cli, ["templates"])
    assert result.exit_code == 0
    assert "documentation-deep" in result.output
    assert "general-default" in result.output


def test_templates_by_category(runner):
    result = runner.invoke(cli, ["templates", "--category", "ecommerce"])
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert lines
    assert all("ecommerce" in line for line in lines)


def test_suggest(runner):
    result = runner.invoke(cli, ["suggest", "https://docs.example.com/guide/intro"])
    assert result.exit_code == 0
    assert result.output.startswith("documentation-deep:")


def _write_result(path, pages):
    path.write_text(json.dumps({"base_url": "https://example.com/", "pages": pages}), encoding="utf-8")


def test_compare(runner, tmp_path):
    old = tmp_path / "old.json"
    new = tmp_path / "new.json"
    _write_result(old, [
        {"url": "https://example.com/a", "content_hash": "1", "content": "one two three"},
        {"url": "https://example.com/gone", "content_hash": "2", "content": "gone"},
    ])
    _write_result(new, [
        {"url": "https://example.com/a", "content_hash": "9", "content": "one two four"},
        {"url": "https://example.com/new", "content_hash": "3", "content": "new"},
    ])

    result = runner.invoke(cli, ["compare", str(old), str(new)])
    assert result.exit_code == 0, result.output
    assert "+ https://example.com/new" in result.output
    assert "- https://example.com/gone" in result.output
    assert "! https://example.com/a" in result.output

    as_json = runner.invoke(cli, ["compare", str(old), str(new), "--json"])
    data = json.loads(as_json.output)
    assert data["added"] == ["https://example.com/new"]
    assert data["modified"]["https://example.com/a"]["significant"] is True


def test_compare_rejects_non_results(runner, tmp_path):
    bogus = tmp_path / "bogus.json"
    bogus.write_text("[1, 2]", encoding="utf-8")
    result = runner.invoke(cli, ["compare", str(bogus), str(bogus)])
    assert result.exit_code == 1
    assert "Cannot compare results" in result.output
