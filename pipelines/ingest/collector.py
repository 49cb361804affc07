"""Source collection: feed polling, discovery-page crawling and query search."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol
from urllib.parse import urljoin

from labwatch.clients.tavily import SearchHit, TavilyError
from labwatch.clients.web import FetchError
from labwatch.config import IngestConfig
from labwatch.models.source import Source, SourceOrigin, SourcePipeline, dedupe_sources
from labwatch.normalize import get_hostname, normalize_name, normalize_url
from pipelines.ingest.extract import anchor_text, extract_company_name, parse_html
from pipelines.ingest.relevance import score_relevance
from pipelines.ingest.rss import TextFetcher, fetch_feed_items
from pipelines.ingest.sources import SourceConfig

logger = logging.getLogger("pipelines.ingest.collector")

MIN_SOURCE_SCORE = 2
MIN_SOURCES_BEFORE_SEARCH = 6
MAX_DISCOVERY_LINKS_PER_PAGE = 120
MAX_FOLLOWUP_QUERIES = 10
MAX_FOLLOWUP_TITLE_WORDS = 8


class SearchClient(Protocol):
    def search(
        self,
        *,
        query: str,
        max_results: int = 5,
        days: int | None = None,
        topic: str = "news",
        search_depth: str = "basic",
        include_domains: Sequence[str] | None = None,
    ) -> list[SearchHit]:
        ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _recency_key(source: Source) -> float:
    return source.published_at.timestamp() if source.published_at else float("-inf")


def rank_sources(
    sources: Sequence[Source],
    *,
    must_include: Iterable[str],
    budget: int,
    pipeline: SourcePipeline = SourcePipeline.NEW_DISCOVERY,
) -> list[Source]:
    """Must-include pages first, then the best (score desc, recency desc) up to `budget`.

    Must-include pages are never dropped by the budget; a page missing from
    `sources` (fetch skipped or failed upstream) is added as a bare overview Source.
    """
    by_url = {source.url: source for source in dedupe_sources(sources)}
    selected: list[Source] = []
    for url in must_include:
        canonical = normalize_url(url) or url
        if any(source.url == canonical for source in selected):
            continue
        source = by_url.pop(canonical, None)
        if source is None:
            source = Source(
                url=canonical,
                publisher=get_hostname(canonical),
                origin=SourceOrigin.DISCOVERY,
                pipeline=pipeline,
            )
        selected.append(source)

    ranked = sorted(
        by_url.values(),
        key=lambda source: (-score_relevance(source.title, source.snippet).score, -_recency_key(source)),
    )
    for source in ranked:
        if len(selected) >= budget:
            break
        selected.append(source)
    return selected


def mentions_subject(hit: SearchHit, names: Iterable[str]) -> bool:
    haystack = normalize_name(f"{hit.title or ''} {hit.snippet or ''}")
    padded = f" {haystack} "
    for name in names:
        needle = normalize_name(name)
        if needle and f" {needle} " in padded:
            return True
    return False


class SourceCollector:
    """Gathers Sources from configured feeds, discovery pages and the search provider."""

    def __init__(
        self,
        *,
        config: IngestConfig,
        sources: SourceConfig,
        fetcher: TextFetcher,
        search_client: SearchClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._sources = sources
        self._fetcher = fetcher
        self._search_client = search_client
        self._clock = clock or _utcnow
        self._followups_issued: set[str] = set()
        if search_client is None:
            logger.warning("collector.search.disabled", extra={"reason": "search provider not configured"})

    @property
    def search_enabled(self) -> bool:
        return self._search_client is not None

    def collect(self, mode: SourcePipeline = SourcePipeline.NEW_DISCOVERY) -> list[Source]:
        """Gather, de-duplicate and rank Sources within the parse budget."""
        return rank_sources(
            self.gather(mode),
            must_include=self._sources.discovery_pages,
            budget=self._config.max_sources_to_parse,
            pipeline=mode,
        )

    def gather(self, mode: SourcePipeline = SourcePipeline.NEW_DISCOVERY) -> list[Source]:
        """Every Source found by the broad strategies, de-duplicated by canonical URL."""
        collected = self.collect_feeds(mode) + self.collect_discovery_pages(mode)
        unique = dedupe_sources(collected)
        if len(unique) < MIN_SOURCES_BEFORE_SEARCH or self._config.force_search:
            unique = dedupe_sources(unique + self.collect_search(mode))
        logger.info(
            "collector.gathered",
            extra={"pipeline": mode.value, "sources": len(unique), "search_enabled": self.search_enabled},
        )
        return unique

    def _is_recent(self, published_at: datetime | None) -> bool:
        if published_at is None:
            return True
        cutoff = self._clock() - timedelta(days=self._config.lookback_days)
        return published_at >= cutoff

    def collect_feeds(self, mode: SourcePipeline) -> list[Source]:
        items = fetch_feed_items(self._sources.rss_feeds, self._fetcher, timeout=self._config.fetch_timeout)
        sources: list[Source] = []
        for item in items:
            if not item.link or not item.title or not normalize_url(item.link):
                continue
            if not self._is_recent(item.published_at):
                continue
            if score_relevance(item.title, item.snippet).score < MIN_SOURCE_SCORE:
                continue
            sources.append(
                Source(
                    url=item.link,
                    title=item.title,
                    publisher=item.feed_title or get_hostname(item.link),
                    published_at=item.published_at,
                    snippet=item.snippet,
                    origin=SourceOrigin.RSS,
                    pipeline=mode,
                )
            )
        return sources

    def collect_discovery_pages(self, mode: SourcePipeline) -> list[Source]:
        sources: list[Source] = []
        for page_url in self._sources.discovery_pages:
            if not self._sources.is_fetch_allowed(page_url):
                continue
            host = get_hostname(page_url)
            sources.append(
                Source(url=page_url, publisher=host, origin=SourceOrigin.DISCOVERY, pipeline=mode)
            )
            try:
                html = self._fetcher.fetch_text(page_url, timeout=self._config.fetch_timeout)
            except FetchError as exc:
                logger.warning(
                    "collector.discovery.failed",
                    extra={"page_url": page_url, "code": exc.code, "error": str(exc)},
                )
                continue
            soup = parse_html(html)
            page_title = soup.title.get_text(strip=True) if soup.title else None
            added = 0
            for anchor in soup.select("a[href]"):
                if added >= MAX_DISCOVERY_LINKS_PER_PAGE:
                    break
                href = anchor.get("href")
                if not isinstance(href, str) or not href.strip():
                    continue
                absolute = normalize_url(_join(page_url, href))
                if not absolute or not self._sources.is_fetch_allowed(absolute):
                    continue
                sources.append(
                    Source(
                        url=absolute,
                        title=anchor_text(anchor) or page_title,
                        publisher=host,
                        origin=SourceOrigin.DISCOVERY,
                        pipeline=mode,
                    )
                )
                added += 1
        return sources

    def collect_search(self, mode: SourcePipeline) -> list[Source]:
        if self._search_client is None:
            return []
        sources: list[Source] = []
        for query in self._sources.search_queries:
            for hit in self._search(query):
                if score_relevance(hit.title).score < MIN_SOURCE_SCORE:
                    continue
                if not self._is_recent(hit.published_at) or not normalize_url(hit.url):
                    continue
                sources.append(self._source_from_hit(hit, SourceOrigin.SEARCH, mode, query))
                if self._config.allowlist_followup and self._needs_followup(hit.url):
                    sources.extend(self._follow_up(hit, mode))
        return sources

    def search_subject(
        self,
        names: Sequence[str],
        *,
        queries: Sequence[str],
        origin: SourceOrigin,
        pipeline: SourcePipeline,
    ) -> list[Source]:
        """Targeted queries for one company; keep hits that mention one of `names`."""
        sources: list[Source] = []
        for query in queries:
            for hit in self._search(query):
                if normalize_url(hit.url) and mentions_subject(hit, names):
                    sources.append(self._source_from_hit(hit, origin, pipeline, query))
        return dedupe_sources(sources)

    def _needs_followup(self, url: str) -> bool:
        host = get_hostname(url)
        return bool(host) and not self._sources.is_allowed(host) and not self._sources.is_denied(host)

    def _follow_up(self, hit: SearchHit, mode: SourcePipeline) -> list[Source]:
        if len(self._followups_issued) >= MAX_FOLLOWUP_QUERIES:
            return []
        query = _followup_query(hit)
        if not query or query in self._followups_issued:
            return []
        self._followups_issued.add(query)
        sources: list[Source] = []
        for result in self._search(query, include_domains=sorted(self._sources.allowed_domains)):
            if not self._sources.is_fetch_allowed(result.url):
                continue
            if score_relevance(result.title).score < MIN_SOURCE_SCORE:
                continue
            sources.append(self._source_from_hit(result, SourceOrigin.ALLOWLIST_FOLLOWUP, mode, query))
        logger.info("collector.followup", extra={"query": query, "sources": len(sources)})
        return sources

    def _search(self, query: str, *, include_domains: Sequence[str] | None = None) -> list[SearchHit]:
        if self._search_client is None:
            return []
        search = self._config.search
        try:
            return self._search_client.search(
                query=query,
                max_results=search.max_results,
                days=self._config.lookback_days,
                topic=search.topic,
                search_depth=search.depth,
                include_domains=include_domains,
            )
        except TavilyError as exc:
            logger.warning(
                "collector.search.failed",
                extra={"query": query, "code": exc.code, "error": str(exc)},
            )
            return []

    @staticmethod
    def _source_from_hit(
        hit: SearchHit, origin: SourceOrigin, pipeline: SourcePipeline, query: str
    ) -> Source:
        return Source(
            url=hit.url,
            title=hit.title,
            publisher=hit.publisher or get_hostname(hit.url),
            published_at=hit.published_at,
            snippet=hit.snippet,
            origin=origin,
            pipeline=pipeline,
            query=query,
        )


def _join(base: str, href: str) -> str:
    try:
        return urljoin(base, href.strip())
    except ValueError:
        return ""


def _followup_query(hit: SearchHit) -> str | None:
    if not hit.title:
        return None
    name = extract_company_name(hit.title)
    if name:
        return f'"{name}" AI lab'
    words = hit.title.split()[:MAX_FOLLOWUP_TITLE_WORDS]
    return " ".join(words) or None
