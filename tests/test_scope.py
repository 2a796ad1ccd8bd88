# File: tests/test_scope.py
import pytest

from kb_scout.crawler.scope import UrlPattern, UrlScope


@pytest.mark.parametrize(
    "pattern,url,expected",
    [
        ("docs", "https://example.com/docs/intro", True),
        ("/api/v[0-9]+/", "https://example.com/api/v2/users", True),
        ("/api/v[0-9]+/", "https://example.com/api/latest/users", False),
        ("*", "https://example.com/anything", True),
        ("*.pdf", "https://example.com/files/report.pdf", True),
        ("*.pdf", "https://example.com/files/report.html", False),
        ("*/guide/*", "https://example.com/guide/start", True),
    ],
)
def test_url_pattern(pattern, url, expected):
    assert UrlPattern(pattern).matches(url) is expected


def test_exclude_wins_over_include():
    scope = UrlScope("https://example.com/", ["docs"], ["private"])
    assert scope.admits("https://example.com/docs/a")
    assert not scope.admits("https://example.com/docs/private/a")
    admitted, reason = scope.check("https://example.com/blog")
    assert not admitted
    assert "include" in reason


def test_start_url_is_exempt_from_include_but_not_exclude():
    scope = UrlScope("https://example.com/start", ["docs"], [])
    assert scope.admits("https://example.com/start")
    assert not scope.admits("https://example.com/other")

    excluded = UrlScope("https://example.com/logout", [], ["logout"])
    assert not excluded.admits("https://example.com/logout")


def test_no_patterns_admits_everything():
    scope = UrlScope("https://example.com/", [], [])
    assert scope.admits("https://example.com/any/path?x=1")


def test_host_scope():
    scope = UrlScope("https://example.com/", ["docs.example.org"], [])
    assert scope.host_in_scope("https://example.com/a")
    assert scope.host_in_scope("https://docs.example.org/guide")
    assert not scope.host_in_scope("https://evil.example.net/")
    assert not scope.host_in_scope("mailto:someone@example.com")
