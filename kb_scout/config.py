# === FILE: kb_scout/config.py ===
"""
Configuration models of KBScout: engine settings, per-job crawl options,
option overrides and credential strategies.
Pydantic describes the schema and validates the data; settings are read from
YAML or JSON files.
"""
from __future__ import annotations

import base64
import errno
import json
import os
from pathlib import Path
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Tuple, Union
from urllib.parse import urlparse

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from kb_scout.utils import split_patterns

__all__ = (
    "DEFAULT_CONTENT_PRIORITY",
    "DEFAULT_EXCLUDE_ELEMENTS",
    "SessionCookie",
    "BearerToken",
    "BasicAuthCredentials",
    "CustomHeaders",
    "ConfluenceAPI",
    "AuthStrategy",
    "AuthConfig",
    "CrawlOptions",
    "CrawlOverrides",
    "Selection",
    "EngineSettings",
    "read_document",
    "load_config",
)

DEFAULT_CONTENT_PRIORITY: Tuple[str, ...] = (
    "article",
    "main",
    "[role=main]",
    ".content",
    ".post-content",
    ".entry-content",
    ".article-content",
    "#content",
    "#main-content",
    ".main-content",
)

DEFAULT_EXCLUDE_ELEMENTS: Tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "template",
    "nav",
    "header",
    "footer",
    "aside",
)


# --------------------------------------------------------------------------- #
# Credential strategies                                                       #
# --------------------------------------------------------------------------- #


class _Strategy(BaseModel):
    """Common behaviour of a credential strategy.

    ``family`` decides which ``authenticationAttempts`` counter a success
    increments: ``"sso"`` or ``"credentials"``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    family: ClassVar[str] = "credentials"

    @property
    def name(self) -> str:
        return getattr(self, "type")

    def applies_to(self, url: str) -> bool:
        return True

    def auth_headers(self) -> Dict[str, str]:
        raise NotImplementedError


class SessionCookie(_Strategy):
    """Raw ``Cookie`` header copied from a logged-in browser session."""

    family: ClassVar[str] = "sso"

    type: Literal["session_cookie"] = "session_cookie"
    cookie_header: SecretStr

    def auth_headers(self) -> Dict[str, str]:
        return {"Cookie": self.cookie_header.get_secret_value()}


class BearerToken(_Strategy):
    type: Literal["bearer_token"] = "bearer_token"
    token: SecretStr

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token.get_secret_value()}"}


class BasicAuthCredentials(_Strategy):
    type: Literal["basic_auth"] = "basic_auth"
    username: str = Field(..., min_length=1)
    password: SecretStr

    def auth_headers(self) -> Dict[str, str]:
        raw = f"{self.username}:{self.password.get_secret_value()}".encode("utf-8")
        return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


class CustomHeaders(_Strategy):
    type: Literal["custom_headers"] = "custom_headers"
    headers: Dict[str, str] = Field(..., min_length=1, repr=False)

    def auth_headers(self) -> Dict[str, str]:
        return dict(self.headers)


class ConfluenceAPI(_Strategy):
    """Confluence personal access token, only sent below ``base_url``."""

    family: ClassVar[str] = "sso"

    type: Literal["confluence_api"] = "confluence_api"
    base_url: HttpUrl
    token: SecretStr

    def applies_to(self, url: str) -> bool:
        base = urlparse(str(self.base_url))
        target = urlparse(url)
        if base.hostname != target.hostname:
            return False
        prefix = base.path.rstrip("/")
        return not prefix or target.path == prefix or target.path.startswith(prefix + "/")

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token.get_secret_value()}",
            "X-Atlassian-Token": "no-check",
        }


AuthStrategy = Annotated[
    Union[SessionCookie, BearerToken, BasicAuthCredentials, CustomHeaders, ConfluenceAPI],
    Field(discriminator="type"),
]


class AuthConfig(BaseModel):
    """Ordered credential strategies; tried first to last on a rejected request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    strategies: Tuple[AuthStrategy, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.strategies)


# --------------------------------------------------------------------------- #
# Crawl options                                                               #
# --------------------------------------------------------------------------- #


class CrawlOptions(BaseModel):
    """Options of one crawl job. Resolved once, immutable for the job's lifetime."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_depth: int = Field(3, ge=0, description="Maximum link depth from the start URL.")
    max_pages: int = Field(50, ge=1, description="Hard limit of fetched pages.")
    include_patterns: Tuple[str, ...] = Field((), description="URL must match one of these.")
    exclude_patterns: Tuple[str, ...] = Field((), description="URL must match none of these.")
    delay_ms: int = Field(1000, ge=0, description="Politeness delay between requests to one host.")
    respect_robots: bool = True
    wait_for_dynamic: bool = False
    content_priority: Tuple[str, ...] = DEFAULT_CONTENT_PRIORITY
    exclude_elements: Tuple[str, ...] = DEFAULT_EXCLUDE_ELEMENTS
    auth_config: Optional[AuthConfig] = None
    template_id: Optional[str] = None

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def _split_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return split_patterns(v)
        return v


class CrawlOverrides(BaseModel):
    """Partial :class:`CrawlOptions`; unset fields keep the template's values.

    Accepts both snake_case and camelCase keys (``maxDepth``), and
    comma-separated free text for the pattern lists.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    max_depth: Optional[int] = Field(None, ge=0)
    max_pages: Optional[int] = Field(None, ge=1)
    include_patterns: Optional[Tuple[str, ...]] = None
    exclude_patterns: Optional[Tuple[str, ...]] = None
    delay_ms: Optional[int] = Field(None, ge=0)
    respect_robots: Optional[bool] = None
    wait_for_dynamic: Optional[bool] = None
    content_priority: Optional[Tuple[str, ...]] = None
    exclude_elements: Optional[Tuple[str, ...]] = None
    auth_config: Optional[AuthConfig] = None

    @field_validator("include_patterns", "exclude_patterns", mode="before")
    @classmethod
    def _split_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return split_patterns(v)
        return v

    def updates(self) -> Dict[str, Any]:
        """Fields explicitly given a value, ready for ``model_copy(update=...)``."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class Selection(BaseModel):
    """How the caller wants options chosen.

    ``mode`` is ``auto``, ``custom``, a template id, or ``template`` together
    with ``template_id``.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    mode: str = Field("auto", min_length=1)
    template_id: Optional[str] = None
    overrides: Optional[CrawlOverrides] = None


# --------------------------------------------------------------------------- #
# Engine settings                                                             #
# --------------------------------------------------------------------------- #


class EngineSettings(BaseModel):
    """Process-level settings of the crawl engine (not per job)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_agent: str = Field("KBScoutBot/1.0", min_length=1, description="User-Agent header.")
    concurrency: int = Field(4, ge=1, le=64, description="Concurrent fetches per job.")
    request_timeout: float = Field(30.0, gt=0, description="Per-request timeout (seconds).")
    job_timeout: Optional[float] = Field(None, gt=0, description="Whole-job timeout (seconds).")
    retry_times: int = Field(0, ge=0, description="Retries on 5xx/429 responses.")
    retry_backoff: float = Field(1.0, ge=0, description="Base of the exponential retry backoff (seconds).")
    max_content_length: int = Field(50_000, ge=1, description="Stored content cap (characters).")
    block_private_hosts: bool = Field(False, description="Reject localhost/private start URLs.")
    templates_file: Optional[Path] = Field(None, description="Extra crawl templates (YAML/JSON).")

    @model_validator(mode="after")
    def _check_templates_file(self) -> EngineSettings:
        if self.templates_file is not None and not Path(self.templates_file).is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(self.templates_file))
        return self


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of YAML must be a mapping, got {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of JSON must be a mapping, got {type(data).__name__}")
    return data


def read_document(path: Union[str, Path]) -> dict[str, Any]:
    """Read a YAML or JSON mapping, chosen by file suffix."""
    path_obj = Path(path).expanduser().resolve()
    if not path_obj.is_file():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))
    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return _read_yaml(path_obj)
    if suffix == ".json":
        return _read_json(path_obj)
    raise ValueError(f"Unsupported config format: {suffix}")


def load_config(path: Union[str, Path, None]) -> EngineSettings:
    """
    Read YAML or JSON and return validated EngineSettings.
    With *path* None, ``configs/default.yaml`` is used when present and the
    built-in defaults otherwise. An explicit missing path raises FileNotFoundError.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            return EngineSettings()
        path = _DEFAULT_CFG
    return EngineSettings(**read_document(path))
