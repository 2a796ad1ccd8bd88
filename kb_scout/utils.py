# File: kb_scout/utils.py
"""kb_scout.utils: URL normalisation and small helpers shared by the crawler modules."""

from __future__ import annotations

import ipaddress
import posixpath
from typing import Collection, List, Sequence
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlparse, urlunparse

from kb_scout.errors import ValidationError
from kb_scout.logger import logger

__all__: Sequence[str] = (
    "normalize_url",
    "strip_fragment",
    "extract_domain",
    "is_http_url",
    "is_private_host",
    "validate_start_url",
    "split_patterns",
    "remove_duplicates",
)

_DEFAULT_PORTS = {"http": 80, "https": 443}
_PATH_SAFE = "/:@!$&'()*+,;=~"


def normalize_url(url: str) -> str:
    """Canonical form used as the visited-set key.

    Lower-cases scheme and host, drops the default port, resolves dot
    segments, removes the trailing slash (except for the root), sorts the
    query parameters and strips the fragment. IPv6 hosts keep their brackets;
    user info is dropped so credentials never end up in visited keys or logs.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"

    path = unquote(parsed.path or "/")
    norm = posixpath.normpath(path)
    if not norm.startswith("/"):
        norm = "/" + norm
    # normpath keeps a leading double slash
    if norm.startswith("//"):
        norm = "/" + norm.lstrip("/")
    if norm != "/":
        norm = norm.rstrip("/")
    norm = quote(norm, safe=_PATH_SAFE)

    qs = parse_qsl(parsed.query, keep_blank_values=True)
    qs.sort()
    query = urlencode(qs, doseq=True)
    return urlunparse((scheme, netloc, norm, "", query, ""))


def strip_fragment(url: str) -> str:
    """Return *url* without its ``#fragment``."""
    return url.split("#", 1)[0]


def extract_domain(url: str) -> str:
    """Host name of *url* without port, lower-cased."""
    return (urlparse(url).hostname or "").lower()


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_private_host(host: str) -> bool:
    """True for localhost and loopback/private/link-local addresses."""
    host = host.lower().strip("[]")
    if host in ("localhost", "0.0.0.0") or host.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def validate_start_url(url: str, *, block_private_hosts: bool = False) -> str:
    """Validate the user-supplied start URL and return it with a scheme.

    A missing scheme defaults to ``https://``. Raises
    :class:`~kb_scout.errors.ValidationError` for anything that is not a
    plain http(s) URL, and for private hosts when *block_private_hosts* is set.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise ValidationError("Start URL is empty")
    if "://" not in candidate:
        candidate = "https://" + candidate
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"Only HTTP and HTTPS URLs are supported: {url}")
    if not parsed.hostname:
        raise ValidationError(f"Invalid URL format: {url}")
    if block_private_hosts and is_private_host(parsed.hostname):
        raise ValidationError(f"Private/local URLs are not allowed: {url}")
    return strip_fragment(candidate)


def split_patterns(text: str) -> List[str]:
    """Split comma-separated free text into a list of non-empty patterns."""
    return [part.strip() for part in text.split(",") if part.strip()]


def remove_duplicates(urls: Collection[str]) -> List[str]:
    """Remove duplicate URLs, preserving order."""
    unique = list(dict.fromkeys(urls))
    removed = len(urls) - len(unique)
    if removed:
        logger.debug("Removed %d duplicate URLs", removed)
    return unique
