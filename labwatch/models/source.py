"""Source documents and their acquisition provenance."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from labwatch.normalize import ensure_utc, normalize_url


class SourceOrigin(str, Enum):
    """How a Source was found."""

    RSS = "rss"
    DISCOVERY = "discovery"
    SEARCH = "search"
    SEED_SEARCH = "seed_search"
    ALLOWLIST_FOLLOWUP = "allowlist_followup"


class SourcePipeline(str, Enum):
    """Which acquisition pipeline produced a Source."""

    KNOWN_UPDATES = "known_updates"
    NEW_DISCOVERY = "new_discovery"
    SEED_BOOTSTRAP = "seed_bootstrap"


class Source(BaseModel):
    """A fetched or search-returned document reference keyed by canonical URL."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1)
    title: str | None = None
    publisher: str | None = None
    published_at: datetime | None = None
    snippet: str | None = None
    kind: str = "overview"
    origin: SourceOrigin | None = None
    pipeline: SourcePipeline | None = None
    query: str | None = None

    @field_validator("url")
    @classmethod
    def _canonical_url(cls, value: str) -> str:
        return normalize_url(value) or value.strip()

    @field_validator("published_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @field_validator("title", "publisher", "snippet", "query")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


# Field precedence when two records share a URL: the earlier record's
# non-null value wins for every field below; `kind` always comes from the first.
_MERGE_FIELDS = ("title", "publisher", "published_at", "snippet", "origin", "pipeline", "query")


def merge_sources(first: Source, second: Source) -> Source:
    """First-wins field fill for two Sources with the same canonical URL."""
    if first.url != second.url:
        raise ValueError(f"Cannot merge sources with different URLs: {first.url} != {second.url}")
    updates = {
        field: getattr(second, field)
        for field in _MERGE_FIELDS
        if getattr(first, field) is None and getattr(second, field) is not None
    }
    return first.model_copy(update=updates) if updates else first


def dedupe_sources(sources: Iterable[Source]) -> list[Source]:
    """Collapse Sources by canonical URL, preserving first-seen order."""
    merged: dict[str, Source] = {}
    for source in sources:
        existing = merged.get(source.url)
        merged[source.url] = merge_sources(existing, source) if existing else source
    return list(merged.values())
