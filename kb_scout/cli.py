# === FILE: kb_scout/cli.py ===
#!/usr/bin/env python3
"""
Command line entry point of KBScout.

Commands:
  crawl URL   Crawl a site and print/save the result
  templates   List the crawl templates
  suggest URL Show the template auto mode would pick for URL
  config      Show the current engine settings
  compare     Compare two saved JSON results (added/removed/modified pages)

Common options:
  --config PATH       YAML/JSON settings (default: configs/default.yaml when present)
  --log-level LEVEL   Logging level (DEBUG, INFO, ...)
  --log-file PATH     Log file (stdout when omitted)
  --log-format FORMAT Logging format string

Example:
  kb-scout crawl https://docs.example.com/guide --max-pages 20 --json crawl.json --pretty
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from pydantic import ValidationError as PydanticValidationError

from kb_scout import __version__
from kb_scout.changes import compare_pages, load_result_pages
from kb_scout.config import AuthConfig, Selection, load_config, read_document
from kb_scout.engine import build_registry, start_crawl
from kb_scout.errors import KBScoutError
from kb_scout.logger import init_logging
from kb_scout.report.html_report import render_html
from kb_scout.report.json_report import render_json
from kb_scout.templates import Category

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg="red", err=True)
    sys.exit(1)


def _split_pair(value: str, sep: str, option: str) -> Tuple[str, str]:
    left, found, right = value.partition(sep)
    if not found or not left.strip():
        raise click.BadParameter(f"expected NAME{sep}VALUE, got {value!r}", param_hint=option)
    return left.strip(), right.strip()


def _auth_config(
    auth_file: Optional[Path],
    cookie: Optional[str],
    confluence_url: Optional[str],
    confluence_token: Optional[str],
    bearer: Optional[str],
    basic: Optional[str],
    headers: Tuple[str, ...],
) -> Optional[AuthConfig]:
    """Credential strategies from ``--auth-file`` (configured order) or the flags."""
    if auth_file is not None:
        return AuthConfig.model_validate(read_document(auth_file))
    strategies: List[Dict[str, Any]] = []
    if cookie:
        strategies.append({"type": "session_cookie", "cookie_header": cookie})
    if confluence_url or confluence_token:
        if not (confluence_url and confluence_token):
            raise click.UsageError("--confluence-url and --confluence-token go together")
        strategies.append({"type": "confluence_api", "base_url": confluence_url, "token": confluence_token})
    if bearer:
        strategies.append({"type": "bearer_token", "token": bearer})
    if basic:
        username, password = _split_pair(basic, ":", "--basic")
        strategies.append({"type": "basic_auth", "username": username, "password": password})
    if headers:
        strategies.append(
            {"type": "custom_headers", "headers": dict(_split_pair(h, ":", "--header") for h in headers)}
        )
    return AuthConfig.model_validate({"strategies": strategies}) if strategies else None


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, "--version", "-v", message="KBScout, version %(version)s")
@click.option(
    "--config", "-c", "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Settings file (YAML or JSON).",
)
@click.option(
    "--log-level", "log_level",
    default="INFO", show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Logging level",
)
@click.option(
    "--log-file", "log_file",
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help="Log file (stdout when omitted)",
)
@click.option(
    "--log-format", "log_format",
    default="%(asctime)s %(levelname)s %(message)s",
    show_default=True,
    help="Logging format string",
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """KBScout: template-driven crawler for knowledge-base ingestion."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format,
    )
    try:
        cfg = load_config(config_path)
    except (OSError, ValueError, TypeError) as e:
        print_error(f"Failed to load configuration: {e}")
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command("crawl", context_settings=CONTEXT_SETTINGS)
@click.argument("url")
@click.option("--mode", "-m", default="auto", show_default=True, help="auto, custom or a template id")
@click.option("--max-depth", type=click.IntRange(min=0), default=None)
@click.option("--max-pages", type=click.IntRange(min=1), default=None)
@click.option("--include", default=None, help="Comma-separated include patterns")
@click.option("--exclude", default=None, help="Comma-separated exclude patterns")
@click.option("--delay-ms", type=click.IntRange(min=0), default=None, help="Per-host politeness delay")
@click.option("--robots/--no-robots", "respect_robots", default=None, help="Respect robots.txt")
@click.option("--auth-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="YAML/JSON file with ordered credential strategies")
@click.option("--cookie", envvar="KB_SCOUT_COOKIE", default=None, help="Session Cookie header")
@click.option("--confluence-url", default=None, help="Confluence base URL for --confluence-token")
@click.option("--confluence-token", envvar="KB_SCOUT_CONFLUENCE_TOKEN", default=None)
@click.option("--bearer", envvar="KB_SCOUT_BEARER_TOKEN", default=None, help="Bearer token")
@click.option("--basic", envvar="KB_SCOUT_BASIC_AUTH", default=None, help="USER:PASSWORD")
@click.option("--header", "headers", multiple=True, help="Custom header NAME:VALUE (repeatable)")
@click.option(
    "--json", "-j", "json_output",
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help="Save the JSON report",
)
@click.option(
    "--html", "-h", "html_output",
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help="Save the HTML report",
)
@click.option(
    "--template-dir", "-t", "template_dir",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory with report.html.j2 (packaged template by default)",
)
@click.option("--pretty", is_flag=True, help="Indent JSON output")
@click.option("--job-timeout", type=float, default=None, help="Whole-crawl timeout (seconds)")
@click.pass_context
def crawl(
    ctx, url, mode, max_depth, max_pages, include, exclude, delay_ms, respect_robots,
    auth_file, cookie, confluence_url, confluence_token, bearer, basic, headers,
    json_output, html_output, template_dir, pretty, job_timeout,
):
    """Crawl URL and print or save the result."""
    cfg = ctx.obj["config"]
    if job_timeout is not None:
        cfg = cfg.model_copy(update={"job_timeout": job_timeout})

    try:
        auth = _auth_config(auth_file, cookie, confluence_url, confluence_token, bearer, basic, headers)
        raw_overrides = {
            "max_depth": max_depth,
            "max_pages": max_pages,
            "include_patterns": include,
            "exclude_patterns": exclude,
            "delay_ms": delay_ms,
            "respect_robots": respect_robots,
            "auth_config": auth,
        }
        overrides = {k: v for k, v in raw_overrides.items() if v is not None}
        selection = Selection.model_validate({"mode": mode, "overrides": overrides or None})
    except (PydanticValidationError, OSError, ValueError) as e:
        print_error(f"Invalid crawl options: {e}")

    click.echo(f"Crawling {url} (mode: {mode})", err=True)
    try:
        result = asyncio.run(start_crawl(url, selection, settings=cfg))
    except KBScoutError as e:
        print_error(f"Crawl failed: {e}")

    s = result.summary
    click.echo(
        f"{result.status.value}: {s.successful_pages} pages, {s.failed_pages} errors, "
        f"{s.duplicate_pages} duplicates in {s.duration:.2f} s",
        err=True,
    )
    for err in result.credential_errors:
        click.secho(f"Credentials needed for {err.url} ({err.login_method})", fg="yellow", err=True)

    if not json_output and not html_output:
        click.echo(result.json(pretty=pretty))
        return

    if json_output:
        try:
            saved_json = render_json(result, json_output, pretty=pretty)
            click.echo(f"JSON report: {saved_json}")
        except OSError as e:
            print_error(f"Failed to save JSON: {e}")

    if html_output:
        try:
            saved_html = render_html(result, html_output, template_dir)
            click.echo(f"HTML report: {saved_html}")
        except OSError as e:
            print_error(f"Failed to save HTML: {e}")


@cli.command("templates", context_settings=CONTEXT_SETTINGS)
@click.option("--category", type=click.Choice([c.value for c in Category]), default=None)
@click.pass_context
def list_templates(ctx, category):
    """List the available crawl templates."""
    registry = build_registry(ctx.obj["config"])
    templates = registry.by_category(category) if category else list(registry)
    for tpl in templates:
        opts = tpl.crawl_options
        click.echo(
            f"{tpl.id:<26} {tpl.category.value:<14} depth={opts.max_depth:<2} "
            f"pages={opts.max_pages:<5} {tpl.name}"
        )


@cli.command("suggest", context_settings=CONTEXT_SETTINGS)
@click.argument("url")
@click.pass_context
def suggest(ctx, url):
    """Show the template auto mode would pick for URL."""
    tpl = build_registry(ctx.obj["config"]).suggest(url)
    click.echo(f"{tpl.id}: {tpl.name} ({tpl.description})")


@cli.command("config", context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Show the current engine settings as JSON."""
    cfg = ctx.obj["config"]
    click.echo(cfg.model_dump_json(indent=2))


@cli.command("compare", context_settings=CONTEXT_SETTINGS)
@click.argument("old", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the comparison as JSON")
def compare(old, new, as_json):
    """Compare two saved JSON crawl results."""
    try:
        diff = compare_pages(load_result_pages(old), load_result_pages(new))
    except (ValueError, KeyError) as e:
        print_error(f"Cannot compare results: {e}")

    if as_json:
        click.echo(json.dumps(
            {
                "added": list(diff.added),
                "removed": list(diff.removed),
                "modified": {
                    url: {
                        "change_percentage": c.change_percentage,
                        "change_summary": c.change_summary,
                        "significant": c.has_significant_changes,
                    }
                    for url, c in diff.changes.items()
                },
                "unchanged": len(diff.unchanged),
            },
            ensure_ascii=False,
            indent=2,
        ))
        return

    for url in diff.added:
        click.echo(f"+ {url}")
    for url in diff.removed:
        click.echo(f"- {url}")
    for url, change in diff.changes.items():
        flag = "!" if change.has_significant_changes else "~"
        click.echo(f"{flag} {url} ({change.change_percentage}%: {change.change_summary})")
    click.echo(f"{len(diff.unchanged)} unchanged")


if __name__ == "__main__":
    cli()
