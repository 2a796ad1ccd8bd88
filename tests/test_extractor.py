# File: tests/test_extractor.py
import hashlib

import pytest

from kb_scout.crawler.extractor import PageExtractor, collapse_whitespace, content_hash
from kb_scout.errors import ExtractError

ARTICLE_TEXT = "Knowledge base article body. " * 10

PAGE = f"""
<html lang="en">
<head>
  <title>  Getting   Started </title>
  <meta property="og:description" content="OG description">
  <meta name="keywords" content="docs, guide">
  <meta name="twitter:creator" content="@writer">
  <meta property="article:published_time" content="2024-05-01T10:00:00Z">
</head>
<body>
  <header><a href="/home">Home</a> Site header text</header>
  <nav><a href="/nav-link">Navigation</a></nav>
  <h1>Guide</h1>
  <h2>Install</h2>
  <h4>Too deep</h4>
  <article>
    <h3>Step one</h3>
    <p>{ARTICLE_TEXT}</p>
    <a href="/guide/next#part">Next</a>
    <a href="https://other.example.org/ref">External</a>
    <a href="#top">Top</a>
    <a href="javascript:void(0)">JS</a>
    <a href="mailto:team@example.com">Mail</a>
    <a href="/guide/next">Next again</a>
    <img src="/img/a.png"><img data-src="/img/lazy.png"><img data-lazy-src="/img/lazier.png">
  </article>
  <script>var hidden = "script text";</script>
  <footer>Footer text</footer>
</body>
</html>
"""


def test_extracts_title_links_images_headings(response_factory):
    page = PageExtractor().extract(response_factory(PAGE, "https://example.com/guide"), depth=1,
                                   parent_url="https://example.com/")
    meta = page.metadata
    assert page.title == "Getting Started"
    assert meta.links == (
        "https://example.com/home",
        "https://example.com/nav-link",
        "https://example.com/guide/next",
        "https://other.example.org/ref",
    )
    assert meta.images == (
        "https://example.com/img/a.png",
        "https://example.com/img/lazy.png",
        "https://example.com/img/lazier.png",
    )
    assert meta.headings == ("Guide", "Install", "Step one")
    assert meta.domain == "example.com"
    assert meta.depth == 1
    assert meta.parent_url == "https://example.com/"
    assert meta.content_type == "text/html"


def test_meta_fallbacks(response_factory):
    meta = PageExtractor().extract(response_factory(PAGE), depth=0).metadata
    assert meta.description == "OG description"
    assert meta.keywords == "docs, guide"
    assert meta.author == "@writer"
    assert meta.published_date == "2024-05-01T10:00:00Z"
    assert meta.language == "en"


def test_content_uses_priority_selector_and_strips_boilerplate(response_factory):
    page = PageExtractor().extract(response_factory(PAGE), depth=0)
    assert page.content.startswith("Step one Knowledge base article body.")
    assert "Site header text" not in page.content
    assert "Footer text" not in page.content
    assert "script text" not in page.content
    assert "  " not in page.content
    assert page.metadata.word_count == len(page.content.split())


def test_body_fallback_when_no_priority_match(response_factory):
    html = "<html><body><div>Short body</div><script>x()</script><footer>f</footer></body></html>"
    page = PageExtractor().extract(response_factory(html), depth=0)
    assert page.content == "Short body"


def test_title_falls_back_to_h1_then_domain(response_factory):
    assert PageExtractor().extract(response_factory("<body><h1>Heading</h1></body>"), 0).title == "Heading"
    assert PageExtractor().extract(response_factory("<body><p>text</p></body>"), 0).title == "example.com"


def test_time_element_and_header_language(response_factory):
    html = '<html><body><time datetime="2023-01-02">Jan 2</time><p>x</p></body></html>'
    page = PageExtractor().extract(
        response_factory(html, headers={"Content-Language": "de"}), 0
    )
    assert page.metadata.published_date == "2023-01-02"
    assert page.metadata.language == "de"


def test_hash_covers_full_content_and_content_is_truncated(response_factory):
    words = " ".join(f"word{i}" for i in range(200))
    html = f"<html><body><p>{words}</p></body></html>"
    page = PageExtractor(max_content_length=50).extract(response_factory(html), 0)
    assert len(page.content) == 50
    assert page.content_hash == hashlib.sha256(words.encode("utf-8")).hexdigest()
    assert page.metadata.word_count == 200


def test_hash_ignores_whitespace_differences():
    assert content_hash("a  b\n\tc ") == content_hash("a b c")
    assert collapse_whitespace("  a \n b ") == "a b"


def test_template_selectors(response_factory):
    html = (
        '<html><body><div class="sidebar">' + "menu " * 50 + "</div>"
        '<div class="docs-content">' + "real text " * 20 + "</div></body></html>"
    )
    extractor = PageExtractor(content_priority=(".docs-content",), exclude_elements=(".sidebar",))
    page = extractor.extract(response_factory(html), 0)
    assert page.content.startswith("real text")
    assert "menu" not in page.content


def test_invalid_selector_is_ignored(response_factory):
    extractor = PageExtractor(content_priority=("main[",), exclude_elements=("script",))
    page = extractor.extract(response_factory("<body><p>hello</p></body>"), 0)
    assert page.content == "hello"


def test_auth_method_recorded(response_factory):
    page = PageExtractor().extract(response_factory("<p>x</p>"), 0, auth_method="bearer_token")
    assert page.metadata.auth_method == "bearer_token"


@pytest.mark.parametrize(
    "body,content_type",
    [
        ("%PDF-1.4", "application/pdf"),
        ("{}", "application/json"),
        ("", "text/html"),
        ("   \n ", "text/html"),
    ],
)
def test_extract_errors(response_factory, body, content_type):
    with pytest.raises(ExtractError):
        PageExtractor().extract(response_factory(body, content_type=content_type), 0)


def test_page_to_dict_is_json_friendly(response_factory):
    data = PageExtractor().extract(response_factory(PAGE), 0).to_dict()
    assert isinstance(data["metadata"]["links"], list)
    assert isinstance(data["timestamp"], str)
