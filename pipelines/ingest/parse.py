"""Fetch-and-resolve step: turn ranked Sources into Candidates on a worker pool."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from labwatch.clients.web import FetchError
from labwatch.models.company import Candidate
from labwatch.models.source import Source
from labwatch.normalize import normalize_name
from pipelines.ingest.entity_resolution import EntityResolver, ResolutionDocument
from pipelines.ingest.extract import (
    ListedCompany,
    extract_company_name,
    extract_directory_companies,
    extract_external_website,
    extract_json_ld_names,
    extract_meta_description,
    extract_portfolio_companies,
    parse_html,
)
from pipelines.ingest.relevance import score_relevance
from pipelines.ingest.rss import TextFetcher
from pipelines.ingest.sources import SourceConfig

logger = logging.getLogger("pipelines.ingest.parse")

MIN_CANDIDATE_SCORE = 2
DEFAULT_CONCURRENCY = 4


class SourceParser:
    """Builds Candidates for a single Source; safe to share across worker threads."""

    def __init__(
        self,
        *,
        fetcher: TextFetcher,
        resolver: EntityResolver,
        sources: SourceConfig,
        fetch_timeout: float = 10.0,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._sources = sources
        self._fetch_timeout = fetch_timeout

    def build_candidates(self, source: Source) -> list[Candidate]:
        json_ld_names: list[str] = []
        fallback_names: list[str] = []
        website_url: str | None = None
        meta_description: str | None = None

        if self._sources.is_fetch_allowed(source.url):
            try:
                html = self._fetcher.fetch_text(source.url, timeout=self._fetch_timeout)
            except FetchError as exc:
                logger.warning(
                    "parse.fetch.failed",
                    extra={"url": source.url, "code": exc.code, "error": str(exc)},
                )
            else:
                soup = parse_html(html)
                if self._sources.is_portfolio_page(source.url):
                    return _listed_candidates(
                        extract_portfolio_companies(soup, source.url, self._sources), source
                    )
                if self._sources.is_directory(source.url):
                    return _listed_candidates(extract_directory_companies(soup, source.url), source)
                meta_description = extract_meta_description(soup)
                json_ld_names = extract_json_ld_names(soup, self._sources.publisher_denylist)
                website_url = extract_external_website(soup, source.url, self._sources)
        elif source.title and not extract_company_name(source.title):
            fallback_names.append(source.title)

        resolution = self._resolver.resolve(
            ResolutionDocument(
                url=source.url,
                title=source.title,
                snippet=source.snippet,
                meta_description=meta_description,
                json_ld_names=tuple(json_ld_names),
                fallback_names=tuple(fallback_names),
            )
        )

        snippet = " ".join(part for part in (source.snippet, meta_description) if part)
        candidates: list[Candidate] = []
        seen: set[str] = set()
        for name in resolution.names:
            if score_relevance(source.title or name, snippet).score < MIN_CANDIDATE_SCORE:
                continue
            key = normalize_name(name)
            if not key or key in seen:
                continue
            seen.add(key)
            candidates.append(
                Candidate(
                    name=name,
                    website_url=website_url,
                    aliases=[key],
                    last_verified_at=source.published_at,
                    sources=[source],
                )
            )
        return candidates


def _listed_candidates(companies: Sequence[ListedCompany], source: Source) -> list[Candidate]:
    candidates: list[Candidate] = []
    for company in companies:
        key = normalize_name(company.name)
        if not key:
            continue
        candidates.append(
            Candidate(
                name=company.name,
                website_url=company.website_url,
                aliases=[key],
                last_verified_at=source.published_at,
                sources=[source],
            )
        )
    return candidates


def parse_sources(
    sources: Sequence[Source], parser: SourceParser, *, concurrency: int = DEFAULT_CONCURRENCY
) -> list[Candidate]:
    """Resolve Sources on a bounded pool; results keep the ranked input order."""

    def _work(source: Source) -> list[Candidate]:
        try:
            return parser.build_candidates(source)
        except Exception:  # noqa: BLE001
            logger.exception("parse.source.failed", extra={"url": source.url})
            return []

    if not sources:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(concurrency, len(sources)))) as executor:
        batches = list(executor.map(_work, sources))

    candidates = [candidate for batch in batches for candidate in batch]
    logger.info(
        "parse.completed",
        extra={"sources": len(sources), "candidates": len(candidates)},
    )
    return candidates
