# kb_scout/crawler/auth.py
"""
Authentication of rejected requests.

When a page answers 401/403 (or bounces to a login page) the crawler asks
:class:`Authenticator` to try the job's credential strategies in their
configured order. Each strategy is validated with a cheap probe of the
same URL; the first one the server accepts is returned. Only strategy
*names* are ever logged or recorded.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence
from urllib.parse import urlparse

from kb_scout.config import AuthConfig, AuthStrategy
from kb_scout.crawler.fetcher import Fetcher
from kb_scout.crawler.models import FetchResponse
from kb_scout.errors import AuthFailure, FetchError
from kb_scout.logger import logger

__all__ = (
    "AuthResult",
    "Authenticator",
    "is_auth_rejection",
    "is_login_redirect",
    "is_internal_domain",
    "credential_hint",
)

AUTH_REJECT_STATUS: Sequence[int] = (401, 403)

_LOGIN_PATH_RE = re.compile(
    r"/(login|log-in|logon|signin|sign-in|sso|auth|authenticate|oauth2?|saml2?|idp)(/|$|\.|\?)",
    re.IGNORECASE,
)

_INTERNAL_DOMAIN_PATTERNS = (
    re.compile(r".*\.sharepoint\.com$"),
    re.compile(r".*\.onmicrosoft\.com$"),
    re.compile(r".*\.office\.com$"),
    re.compile(r".*\.atlassian\.(net|com)$"),
    re.compile(r".*\.corp\."),
    re.compile(r".*\.internal$"),
    re.compile(r".*\.intranet$"),
    re.compile(r".*\.local$"),
)


def is_login_redirect(resp: FetchResponse) -> bool:
    """A redirect that ended on a login-looking path the request did not ask for."""
    if not resp.redirected:
        return False
    final_path = urlparse(resp.final_url).path
    asked_path = urlparse(resp.url).path
    return bool(_LOGIN_PATH_RE.search(final_path)) and not _LOGIN_PATH_RE.search(asked_path)


def is_auth_rejection(resp: FetchResponse) -> bool:
    return resp.status in AUTH_REJECT_STATUS or is_login_redirect(resp)


def is_internal_domain(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(p.match(host) for p in _INTERNAL_DOMAIN_PATTERNS)


def credential_hint(url: str) -> str:
    """Actionable hint telling the user which credentials the site probably wants."""
    host = (urlparse(url).hostname or "").lower()
    if "atlassian" in host or "confluence" in host:
        return (
            "For Atlassian sites use a session cookie from your browser "
            "(developer tools → Application → Cookies) or a Confluence API token."
        )
    if any(word in host for word in ("sharepoint", "office", "microsoft")):
        return "For SharePoint/Office 365 use a session cookie containing the FedAuth cookies."
    if "google" in host:
        return "For Google sites use a session cookie containing the SAPISID/APISID cookies."
    if is_internal_domain(url):
        return "For internal sites use session cookies copied from a logged-in browser."
    return "Configure a session cookie, bearer token, basic auth or custom headers for this site."


@dataclass(frozen=True, slots=True)
class AuthResult:
    """The strategy a server accepted and the headers to send with it."""

    strategy: AuthStrategy
    headers: Dict[str, str] = field(repr=False)

    @property
    def method(self) -> str:
        return self.strategy.name

    @property
    def family(self) -> str:
        return self.strategy.family


class Authenticator:
    """Tries credential strategies in order against a rejecting URL."""

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    async def attempt_auth(
        self,
        url: str,
        auth_config: Optional[AuthConfig],
        *,
        status: Optional[int] = None,
    ) -> AuthResult:
        """Return the first accepted strategy or raise :class:`AuthFailure`.

        Without any strategy nothing is probed and the failure reports
        ``login_method="unknown"``; otherwise it names the last strategy tried.
        """
        domain = urlparse(url).hostname or url
        reason = f"HTTP {status}" if status else "login required"
        if not auth_config:
            raise AuthFailure(
                url,
                f"Authentication required for {domain} ({reason}) but no credentials are configured. "
                f"{credential_hint(url)}",
                login_method="unknown",
            )

        last_tried: Optional[str] = None
        for strategy in auth_config.strategies:
            if not strategy.applies_to(url):
                logger.debug("Strategy %s does not apply to %s", strategy.name, url)
                continue
            last_tried = strategy.name
            headers = strategy.auth_headers()
            try:
                resp = await self._fetcher.probe(url, headers)
            except FetchError as exc:
                logger.info("Auth probe with %s failed for %s: %s", strategy.name, url, exc)
                continue
            if is_auth_rejection(resp):
                logger.info("Strategy %s rejected by %s (HTTP %s)", strategy.name, domain, resp.status)
                continue
            logger.info("Authenticated %s with %s", url, strategy.name)
            return AuthResult(strategy=strategy, headers=headers)

        tried = last_tried or "unknown"
        raise AuthFailure(
            url,
            f"Authentication failed for {domain} ({reason}); "
            f"all configured strategies were rejected (last tried: {tried}). {credential_hint(url)}",
            login_method=tried,
        )
