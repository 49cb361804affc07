"""RSS/Atom feed polling."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import feedparser
from bs4 import BeautifulSoup

from labwatch.clients.web import FetchError
from labwatch.normalize import normalize_whitespace

logger = logging.getLogger("pipelines.ingest.rss")


class TextFetcher(Protocol):
    def fetch_text(self, url: str, *, timeout: float | None = None) -> str:
        ...


@dataclass(frozen=True)
class FeedItem:
    title: str | None
    link: str | None
    published_at: datetime | None
    feed_title: str | None
    snippet: str | None


def _entry_timestamp(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        value = entry.get(key)
        if value:
            return datetime(*value[:6], tzinfo=UTC)
    return None


def _entry_snippet(entry: Any) -> str | None:
    raw = entry.get("summary") or entry.get("description")
    if not raw and entry.get("content"):
        raw = entry["content"][0].get("value")
    if not raw:
        return None
    text = normalize_whitespace(BeautifulSoup(raw, "lxml").get_text(" "))
    return text or None


def parse_feed(document: str) -> list[FeedItem]:
    """Parse feed XML into items; malformed entries are skipped."""
    parsed = feedparser.parse(document)
    feed_title = parsed.feed.get("title") or None
    items: list[FeedItem] = []
    for entry in parsed.entries:
        items.append(
            FeedItem(
                title=entry.get("title") or None,
                link=entry.get("link") or entry.get("id") or None,
                published_at=_entry_timestamp(entry),
                feed_title=feed_title,
                snippet=_entry_snippet(entry),
            )
        )
    return items


def fetch_feed_items(
    feed_urls: Sequence[str], fetcher: TextFetcher, *, timeout: float | None = None
) -> list[FeedItem]:
    items: list[FeedItem] = []
    for feed_url in feed_urls:
        try:
            document = fetcher.fetch_text(feed_url, timeout=timeout)
        except FetchError as exc:
            logger.warning(
                "collector.feed.failed",
                extra={"feed_url": feed_url, "code": exc.code, "error": str(exc)},
            )
            continue
        feed_items = parse_feed(document)
        logger.info("collector.feed.parsed", extra={"feed_url": feed_url, "items": len(feed_items)})
        items.extend(feed_items)
    return items
