# File: tests/test_config.py
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from kb_scout.config import (
    AuthConfig,
    BasicAuthCredentials,
    BearerToken,
    ConfluenceAPI,
    CrawlOptions,
    CrawlOverrides,
    EngineSettings,
    Selection,
    load_config,
)


def write_file(tmp_path: Path, content: str, suffix: str) -> Path:
    path = tmp_path / f"config{suffix}"
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    "content,suffix,expect_exc",
    [
        ("concurrency: 2\nuser_agent: Agent/1.0", ".yaml", None),
        (json.dumps({"concurrency": 2, "user_agent": "Agent/1.0"}), ".json", None),
        ("concurrency: 0", ".yaml", ValidationError),
        ("unknown_key: 1", ".yaml", ValidationError),
        ("not: a: mapping", ".yaml", ValueError),
        ("- just\n- a list", ".yaml", TypeError),
        ("{broken", ".json", ValueError),
    ],
)
def test_load_config_variants(tmp_path, content, suffix, expect_exc):
    cfg_path = write_file(tmp_path, content, suffix)
    if expect_exc:
        with pytest.raises(expect_exc):
            load_config(cfg_path)
    else:
        cfg = load_config(cfg_path)
        assert isinstance(cfg, EngineSettings)
        assert cfg.concurrency == 2
        assert cfg.user_agent == "Agent/1.0"


def test_load_config_default_missing_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = load_config(None)
    assert cfg == EngineSettings()
    assert cfg.concurrency == 4
    assert cfg.retry_times == 0
    assert cfg.max_content_length == 50_000


def test_load_config_default_file(tmp_path, monkeypatch):
    (tmp_path / "configs").mkdir()
    (tmp_path / "configs" / "default.yaml").write_text("request_timeout: 7.5\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    assert load_config(None).request_timeout == 7.5


def test_load_config_explicit_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_unsupported_suffix(tmp_path):
    with pytest.raises(ValueError):
        load_config(write_file(tmp_path, "x = 1", ".toml"))


def test_templates_file_not_found(tmp_path):
    cfg_path = write_file(tmp_path, f"templates_file: {tmp_path / 'missing.yaml'}", ".yaml")
    with pytest.raises(FileNotFoundError):
        load_config(cfg_path)


def test_auth_config_discriminated_union():
    auth = AuthConfig.model_validate(
        {
            "strategies": [
                {"type": "session_cookie", "cookie_header": "sid=abc"},
                {"type": "bearer_token", "token": "t0k"},
                {"type": "basic_auth", "username": "alice", "password": "secret"},
                {"type": "custom_headers", "headers": {"X-Api-Key": "k"}},
                {"type": "confluence_api", "base_url": "https://acme.atlassian.net/wiki", "token": "c"},
            ]
        }
    )
    assert [s.name for s in auth.strategies] == [
        "session_cookie",
        "bearer_token",
        "basic_auth",
        "custom_headers",
        "confluence_api",
    ]
    assert [s.family for s in auth.strategies] == ["sso", "credentials", "credentials", "credentials", "sso"]
    assert auth.strategies[0].auth_headers() == {"Cookie": "sid=abc"}
    assert auth.strategies[1].auth_headers() == {"Authorization": "Bearer t0k"}
    assert auth.strategies[3].auth_headers() == {"X-Api-Key": "k"}
    assert bool(auth)
    assert not AuthConfig()


def test_unknown_strategy_type_rejected():
    with pytest.raises(ValidationError):
        AuthConfig.model_validate({"strategies": [{"type": "kerberos"}]})


def test_secrets_not_in_repr():
    strategy = BearerToken(token="super-secret")
    basic = BasicAuthCredentials(username="bob", password="hunter2")
    assert "super-secret" not in repr(strategy)
    assert "hunter2" not in repr(basic)
    assert "hunter2" not in basic.model_dump_json()


def test_basic_auth_header():
    header = BasicAuthCredentials(username="user", password="pass").auth_headers()["Authorization"]
    assert header == "Basic dXNlcjpwYXNz"


@pytest.mark.parametrize(
    "username,password,expected",
    [
        ("jos\u00e9", "p\u00e4ss", "Basic am9zw6k6cMOkc3M="),
        ("alice", "s3cr:et", "Basic YWxpY2U6czNjcjpldA=="),
    ],
)
def test_basic_auth_header_utf8_and_colons(username, password, expected):
    header = BasicAuthCredentials(username=username, password=password).auth_headers()["Authorization"]
    assert header == expected


def test_confluence_applies_only_below_base_url():
    strategy = ConfluenceAPI(base_url="https://acme.atlassian.net/wiki", token="t")
    assert strategy.applies_to("https://acme.atlassian.net/wiki/spaces/DOC")
    assert strategy.applies_to("https://acme.atlassian.net/wiki")
    assert not strategy.applies_to("https://acme.atlassian.net/wikipedia")
    assert not strategy.applies_to("https://other.example.com/wiki/spaces")
    assert strategy.auth_headers()["X-Atlassian-Token"] == "no-check"


def test_crawl_options_are_frozen_and_validated():
    opts = CrawlOptions()
    assert (opts.max_depth, opts.max_pages, opts.delay_ms, opts.respect_robots) == (3, 50, 1000, True)
    with pytest.raises(ValidationError):
        opts.max_depth = 5
    with pytest.raises(ValidationError):
        CrawlOptions(max_pages=0)
    with pytest.raises(ValidationError):
        CrawlOptions(max_depth=-1)


def test_crawl_options_split_pattern_text():
    opts = CrawlOptions(include_patterns="docs, guide", exclude_patterns="login")
    assert opts.include_patterns == ("docs", "guide")
    assert opts.exclude_patterns == ("login",)


def test_overrides_accept_camel_case_and_report_set_fields():
    overrides = CrawlOverrides.model_validate({"maxDepth": 2, "includePatterns": "a,b", "delay_ms": 0})
    assert overrides.updates() == {"max_depth": 2, "include_patterns": ("a", "b"), "delay_ms": 0}


def test_selection_defaults():
    sel = Selection()
    assert sel.mode == "auto"
    assert sel.overrides is None
    assert Selection.model_validate({"mode": "template", "templateId": "wiki-knowledge"}).template_id == "wiki-knowledge"
