"""Source lists (feeds, discovery pages, domain allow/deny lists, queries)."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from labwatch.normalize import get_hostname

logger = logging.getLogger("pipelines.ingest.sources")

DEFAULT_SOURCES_PATH = Path("configs/sources.v1.yaml")


class SourceConfigError(RuntimeError):
    """Raised when a source configuration cannot be loaded or validated."""

    def __init__(self, message: str, code: str = "SOURCES_LOAD_ERROR") -> None:
        super().__init__(message)
        self.code = code


def domain_in(host: str | None, domains: Iterable[str]) -> bool:
    """True when `host` equals a listed domain or is a subdomain of one."""
    if not host:
        return False
    return any(host == domain or host.endswith("." + domain) for domain in domains)


@dataclass(frozen=True)
class SourceConfig:
    version: str = "builtin"
    rss_feeds: tuple[str, ...] = (
        "https://techcrunch.com/feed/",
        "https://techcrunch.com/tag/artificial-intelligence/feed/",
        "https://feeds.venturebeat.com/VentureBeat",
        "https://feeds.venturebeat.com/topstories",
        "https://venturebeat.com/category/ai/feed/",
        "https://www.wired.com/feed/tag/ai/latest/rss",
    )
    discovery_pages: tuple[str, ...] = (
        "https://a16z.com/news-content/",
        "https://a16z.com/portfolio/",
        "https://www.indexventures.com/perspectives/",
        "https://www.sequoiacap.com/stories/",
    )
    allowed_domains: frozenset[str] = frozenset(
        {
            "techcrunch.com",
            "venturebeat.com",
            "wired.com",
            "axios.com",
            "a16z.com",
            "indexventures.com",
            "sequoiacap.com",
            "wikipedia.org",
            "seedtable.com",
            "topstartups.io",
            "nfx.com",
            "startupblink.com",
            "failory.com",
            "wellfound.com",
        }
    )
    denied_domains: frozenset[str] = frozenset(
        {
            "theinformation.com",
            "ft.com",
            "wsj.com",
            "bloomberg.com",
            "nytimes.com",
            "economist.com",
            "linkedin.com",
            "x.com",
            "twitter.com",
            "medium.com",
        }
    )
    directory_domains: frozenset[str] = frozenset(
        {
            "seedtable.com",
            "topstartups.io",
            "nfx.com",
            "startupblink.com",
            "failory.com",
            "wellfound.com",
        }
    )
    portfolio_domains: frozenset[str] = frozenset({"a16z.com"})
    search_queries: tuple[str, ...] = (
        "AI research lab startup seed round",
        "new AI lab startup raised seed",
        "stealth AI lab founded by former OpenAI DeepMind",
        "AI institute startup funding",
        "research lab AI startup announced",
        "AI safety lab startup",
        "AGI research lab startup",
        "foundation model lab startup",
        "frontier model research lab",
        "research institute AI startup",
        "AI lab emerges from stealth",
        "research lab startup",
        "new research lab startup",
        "research lab startup funding",
        "research lab startup seed round",
        "lab startup raised seed",
        "lab startup emerges from stealth",
        "new lab startup announced",
    )
    publisher_denylist: frozenset[str] = frozenset(
        {
            "techcrunch",
            "venturebeat",
            "wired",
            "axios",
            "a16z",
            "andreessen horowitz",
            "index ventures",
            "sequoia capital",
            "wikipedia",
        }
    )
    sha256: str | None = field(default=None, compare=False)

    def is_allowed(self, host: str | None) -> bool:
        return domain_in(host, self.allowed_domains)

    def is_denied(self, host: str | None) -> bool:
        return domain_in(host, self.denied_domains)

    def is_fetch_allowed(self, url: str) -> bool:
        host = get_hostname(url)
        if not host or self.is_denied(host):
            return False
        return self.is_allowed(host)

    def is_directory(self, url: str) -> bool:
        return domain_in(get_hostname(url), self.directory_domains)

    def is_portfolio_page(self, url: str) -> bool:
        return domain_in(get_hostname(url), self.portfolio_domains) and "/portfolio" in url


DEFAULT_SOURCE_CONFIG = SourceConfig()

_LIST_FIELDS = ("rss_feeds", "discovery_pages", "search_queries")
_SET_FIELDS = (
    "allowed_domains",
    "denied_domains",
    "directory_domains",
    "portfolio_domains",
    "publisher_denylist",
)


def _string_list(parsed: Mapping[str, Any], key: str) -> list[str] | None:
    if key not in parsed:
        return None
    value = parsed[key]
    if not isinstance(value, Sequence) or isinstance(value, str):
        raise SourceConfigError(f"{key} must be a list of strings.", code="SOURCES_SCHEMA_INVALID")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise SourceConfigError(
                f"{key} contains a non-string or empty entry: {item!r}",
                code="SOURCES_SCHEMA_INVALID",
            )
        items.append(item.strip())
    return items


def load_source_config(path: Path | None = None) -> SourceConfig:
    """Load a YAML override; keys that are omitted keep their built-in defaults."""
    target = (path or DEFAULT_SOURCES_PATH).expanduser()
    if not target.exists():
        raise SourceConfigError(f"Source config not found at {target}")
    try:
        parsed = yaml.safe_load(target.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise SourceConfigError(
            f"Unable to parse YAML: {exc}", code="SOURCES_SCHEMA_INVALID"
        ) from exc
    if not isinstance(parsed, Mapping):
        raise SourceConfigError("Source config must be a mapping.", code="SOURCES_SCHEMA_INVALID")

    version = str(parsed.get("version") or "").strip()
    if not version:
        raise SourceConfigError("version is required.", code="SOURCES_SCHEMA_INVALID")

    overrides: dict[str, Any] = {}
    for key in _LIST_FIELDS:
        values = _string_list(parsed, key)
        if values is not None:
            overrides[key] = tuple(values)
    for key in _SET_FIELDS:
        values = _string_list(parsed, key)
        if values is not None:
            overrides[key] = frozenset(value.lower() for value in values)

    for url in overrides.get("rss_feeds", ()) + overrides.get("discovery_pages", ()):
        if not get_hostname(url):
            raise SourceConfigError(f"Invalid URL in source config: {url}", code="SOURCES_SCHEMA_INVALID")

    canonical = json.dumps(parsed, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    sha256 = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    logger.info("Loaded source config version=%s sha=%s", version, sha256)
    return SourceConfig(version=version, sha256=sha256, **overrides)
