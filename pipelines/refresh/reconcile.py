"""Merge a deep-research result into an existing KnownCompany.

Dynamic fields (website, canonical domain, employee count, revenue, status)
are overwritten whenever the result supplies a value. Static fields
(description, focus, HQ, founded year) are only filled while empty.
Valuations must be backed by a cited URL.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from labwatch.models.company import CompanyStatus, FundingRound, KnownCompany, RefreshUpdate
from labwatch.models.research import ResearchFieldBasis, ResearchTaskResult
from labwatch.models.source import Source
from labwatch.normalize import get_hostname, normalize_url, parse_date, parse_datetime

logger = logging.getLogger("pipelines.refresh.reconcile")

MAX_SOURCES = 10
MAX_FUNDING_ROUNDS = 5
MAX_INVESTORS = 12
VALUATION_ROUND_TYPE = "valuation"
REFRESH_SOURCE_KIND = "refresh"
KEYWORD_WINDOW = 80
MIN_PLAUSIBLE_VALUATION = 1_000_000
MAX_PLAUSIBLE_VALUATION = 10_000_000_000_000

_MONEY = re.compile(
    r"(\$)?\s*(\d[\d,]*(?:\.\d+)?)\s*(billion|million|thousand|bn|b|m|k)?\b",
    re.IGNORECASE,
)
_VALUATION_KEYWORD = re.compile(r"valuation|valued|post-money|pre-money|worth", re.IGNORECASE)
_UNIT_MULTIPLIERS = {
    "billion": 1e9,
    "bn": 1e9,
    "b": 1e9,
    "million": 1e6,
    "m": 1e6,
    "thousand": 1e3,
    "k": 1e3,
}


@dataclass(frozen=True)
class RefreshOutcome:
    update: RefreshUpdate | None
    sources: list[Source] = field(default_factory=list)
    funding_rounds: list[FundingRound] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractedValuation:
    value: int
    source_url: str


def _positive_int(value: float | None) -> int | None:
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return int(round(value))


def _coerce_status(value: str | None) -> CompanyStatus | None:
    if not value:
        return None
    try:
        return CompanyStatus(value.strip().lower())
    except ValueError:
        return None


def _investors(values: list[str] | None) -> list[str]:
    unique: list[str] = []
    for value in values or []:
        if value not in unique:
            unique.append(value)
    return unique[:MAX_INVESTORS]


def parse_money(text: str) -> int | None:
    """Largest money figure within reach of a valuation keyword, in whole USD."""
    keywords = [match.span() for match in _VALUATION_KEYWORD.finditer(text)]
    if not keywords:
        return None
    best: float | None = None
    for match in _MONEY.finditer(text):
        dollar, digits, unit = match.groups()
        if not dollar and not unit:
            continue
        start, end = match.span()
        near = any(
            k_start - KEYWORD_WINDOW <= end and start <= k_end + KEYWORD_WINDOW
            for k_start, k_end in keywords
        )
        if not near:
            continue
        try:
            amount = float(digits.replace(",", ""))
        except ValueError:
            continue
        value = amount * _UNIT_MULTIPLIERS.get((unit or "").lower(), 1.0)
        if not MIN_PLAUSIBLE_VALUATION <= value <= MAX_PLAUSIBLE_VALUATION:
            continue
        if best is None or value > best:
            best = value
    return int(round(best)) if best is not None else None


def extract_valuation_from_basis(basis: list[ResearchFieldBasis]) -> ExtractedValuation | None:
    """Scan cited excerpts for a valuation figure; only citations with a URL count."""
    best: ExtractedValuation | None = None
    for entry in basis:
        for citation in entry.citations:
            if not citation.url or not citation.body:
                continue
            value = parse_money(citation.body)
            if value is None:
                continue
            if best is None or value > best.value:
                best = ExtractedValuation(value=value, source_url=citation.url)
    return best


def _first_citation_url(basis: ResearchFieldBasis | None) -> str | None:
    if basis is None:
        return None
    return next((citation.url for citation in basis.citations if citation.url), None)


def _refresh_sources(result: ResearchTaskResult) -> list[Source]:
    sources: dict[str, Source] = {}
    for raw in result.content.sources:
        if not raw.url:
            continue
        url = normalize_url(raw.url) or raw.url
        if url in sources:
            continue
        sources[url] = Source(
            url=url,
            title=raw.title,
            publisher=raw.publisher,
            published_at=parse_datetime(raw.published_at),
            kind=REFRESH_SOURCE_KIND,
        )
    return list(sources.values())[:MAX_SOURCES]


def _refresh_rounds(
    result: ResearchTaskResult,
    *,
    valuation_usd: int | None,
    valuation_as_of: date | None,
    valuation_source_url: str | None,
) -> list[FundingRound]:
    funding_basis = result.basis_for("funding_rounds")
    valuations_cited = funding_basis is not None and funding_basis.is_corroborated

    rounds: dict[tuple[object, ...], FundingRound] = {}
    for raw in result.content.funding_rounds:
        funding_round = FundingRound(
            round_type=raw.round_type,
            amount_usd=_positive_int(raw.amount_usd),
            valuation_usd=_positive_int(raw.valuation_usd) if valuations_cited else None,
            announced_at=parse_date(raw.announced_at),
            investors=_investors(raw.investors),
            source_url=raw.source_url,
        )
        if funding_round.is_empty:
            continue
        rounds.setdefault(funding_round.identity_key(), funding_round)

    if valuation_usd is not None:
        synthetic = FundingRound(
            round_type=VALUATION_ROUND_TYPE,
            valuation_usd=valuation_usd,
            announced_at=valuation_as_of,
            source_url=valuation_source_url,
        )
        rounds.setdefault(synthetic.identity_key(), synthetic)

    return list(rounds.values())[:MAX_FUNDING_ROUNDS]


def reconcile(
    existing: KnownCompany,
    result: ResearchTaskResult | None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> RefreshOutcome:
    """Compute the field update, sources and funding rounds for one refreshed company."""
    if result is None:
        return RefreshOutcome(update=None)

    content = result.content
    now = (clock or (lambda: datetime.now(UTC)))()

    website_url = content.website_url
    canonical_domain = content.canonical_domain or get_hostname(website_url)

    valuation_basis = result.basis_for("valuation_usd", "valuation")
    valuation_cited = valuation_basis is not None and valuation_basis.is_corroborated
    valuation_usd = _positive_int(content.valuation_usd) if valuation_cited else None
    valuation_source_url = content.valuation_source_url
    if valuation_cited and not valuation_source_url:
        valuation_source_url = _first_citation_url(valuation_basis)
    if valuation_usd is None:
        extracted = extract_valuation_from_basis(result.basis)
        if extracted is not None:
            valuation_usd = extracted.value
            valuation_source_url = valuation_source_url or extracted.source_url
    if content.valuation_usd is not None and not valuation_cited:
        logger.info(
            "reconcile.valuation.uncorroborated",
            extra={"company_id": existing.id, "recovered": valuation_usd is not None},
        )

    update = RefreshUpdate(
        website_url=website_url,
        canonical_domain=canonical_domain,
        employee_count=_positive_int(content.employee_count),
        known_revenue=content.known_revenue,
        status=_coerce_status(content.status),
        description=content.description if not existing.description else None,
        focus=content.focus if not existing.focus else None,
        hq_location=content.hq_location if not existing.hq_location else None,
        founded_year=_positive_int(content.founded_year) if not existing.founded_year else None,
        last_verified_at=now,
    )

    return RefreshOutcome(
        update=update,
        sources=_refresh_sources(result),
        funding_rounds=_refresh_rounds(
            result,
            valuation_usd=valuation_usd,
            valuation_as_of=parse_date(content.valuation_as_of),
            valuation_source_url=valuation_source_url,
        ),
    )
