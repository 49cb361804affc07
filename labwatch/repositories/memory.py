"""Lock-guarded in-memory repository for dry runs and tests."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from uuid import uuid4

from labwatch.models.company import (
    Candidate,
    CompanyStatus,
    FundingRound,
    KnownCompany,
    Person,
    RefreshUpdate,
)
from labwatch.models.source import Source
from labwatch.normalize import latest, merge_aliases, normalize_name, normalize_url
from labwatch.repositories.base import UpsertResult

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SourceRow:
    id: str
    url: str
    title: str | None = None
    publisher: str | None = None
    published_at: datetime | None = None
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class PersonRow:
    id: str
    company_id: str
    name: str
    role: str | None = None
    is_founder: bool = False
    profile_url: str | None = None
    primary_source_id: str | None = None


@dataclass
class FundingRoundRow:
    id: str
    company_id: str
    funding_round: FundingRound
    source_id: str | None = None


def _source_id_for(url: str | None, source_ids: Mapping[str, str]) -> str | None:
    if not url:
        return None
    return source_ids.get(normalize_url(url) or url)


class InMemoryRepository:
    """Thread-safe repository mirroring the SQL backend's upsert semantics."""

    def __init__(self, companies: Sequence[KnownCompany] = ()) -> None:
        self.companies: list[KnownCompany] = [company.model_copy() for company in companies]
        self.sources: list[SourceRow] = []
        self.company_sources: set[tuple[str, str, str]] = set()
        self.people: list[PersonRow] = []
        self.funding_rounds: list[FundingRoundRow] = []
        self._lock = Lock()

    def list_companies(self) -> list[KnownCompany]:
        """Known companies, least recently verified first."""
        with self._lock:
            ordered = sorted(
                self.companies,
                key=lambda company: company.last_verified_at.timestamp()
                if company.last_verified_at
                else 0.0,
            )
            return [company.model_copy(deep=True) for company in ordered]

    def get_company(self, company_id: str) -> KnownCompany | None:
        with self._lock:
            for company in self.companies:
                if company.id == company_id:
                    return company.model_copy(deep=True)
        return None

    def upsert_source(self, source: Source) -> UpsertResult:
        url = normalize_url(source.url) or source.url
        with self._lock:
            for row in self.sources:
                if row.url == url:
                    row.title = row.title or source.title
                    row.publisher = row.publisher or source.publisher
                    row.published_at = row.published_at or source.published_at
                    row.updated_at = _utcnow()
                    return UpsertResult(id=row.id, created=False)
            row = SourceRow(
                id=_new_id(),
                url=url,
                title=source.title,
                publisher=source.publisher,
                published_at=source.published_at,
            )
            self.sources.append(row)
            return UpsertResult(id=row.id, created=True)

    def _find_company(self, candidate: Candidate) -> KnownCompany | None:
        if candidate.canonical_domain:
            for company in self.companies:
                if company.canonical_domain == candidate.canonical_domain:
                    return company
        key = normalize_name(candidate.name)
        if key:
            for company in self.companies:
                if key in company.aliases:
                    return company
        return None

    def upsert_company(self, candidate: Candidate) -> UpsertResult:
        with self._lock:
            existing = self._find_company(candidate)
            if existing is not None:
                for name in (
                    "website_url",
                    "description",
                    "focus",
                    "employee_count",
                    "known_revenue",
                    "founded_year",
                    "hq_location",
                ):
                    if getattr(existing, name) is None and getattr(candidate, name) is not None:
                        setattr(existing, name, getattr(candidate, name))
                if existing.canonical_domain is None and candidate.canonical_domain:
                    existing.canonical_domain = candidate.canonical_domain
                existing.aliases = merge_aliases(existing.aliases, candidate.aliases)
                existing.last_verified_at = latest(existing.last_verified_at, candidate.last_verified_at)
                return UpsertResult(id=existing.id, created=False)

            record = KnownCompany(
                id=_new_id(),
                name=candidate.name,
                canonical_domain=candidate.canonical_domain,
                website_url=candidate.website_url,
                description=candidate.description,
                focus=candidate.focus,
                status=candidate.status or CompanyStatus.ACTIVE,
                employee_count=candidate.employee_count,
                known_revenue=candidate.known_revenue,
                hq_location=candidate.hq_location,
                founded_year=candidate.founded_year,
                aliases=list(candidate.aliases),
                last_verified_at=candidate.last_verified_at,
            )
            self.companies.append(record)
            return UpsertResult(id=record.id, created=True)

    def link_company_source(self, company_id: str, source_id: str, kind: str) -> bool:
        with self._lock:
            self.company_sources.add((company_id, source_id, kind))
        return True

    def upsert_people(
        self, company_id: str, people: Sequence[Person], source_ids: Mapping[str, str]
    ) -> int:
        upserted = 0
        with self._lock:
            for person in people:
                key = person.key
                if not key:
                    continue
                source_id = _source_id_for(person.source_url, source_ids)
                existing = next(
                    (
                        row
                        for row in self.people
                        if row.company_id == company_id and normalize_name(row.name) == key
                    ),
                    None,
                )
                if existing is not None:
                    existing.role = existing.role or person.role
                    existing.is_founder = existing.is_founder or person.is_founder
                    existing.profile_url = existing.profile_url or person.profile_url
                    existing.primary_source_id = existing.primary_source_id or source_id
                else:
                    self.people.append(
                        PersonRow(
                            id=_new_id(),
                            company_id=company_id,
                            name=person.name,
                            role=person.role,
                            is_founder=person.is_founder,
                            profile_url=person.profile_url,
                            primary_source_id=source_id,
                        )
                    )
                upserted += 1
        return upserted

    def upsert_funding_rounds(
        self, company_id: str, rounds: Sequence[FundingRound], source_ids: Mapping[str, str]
    ) -> int:
        upserted = 0
        with self._lock:
            for funding_round in rounds:
                if funding_round.is_empty:
                    continue
                source_id = _source_id_for(funding_round.source_url, source_ids)
                existing = next(
                    (
                        row
                        for row in self.funding_rounds
                        if row.company_id == company_id and row.funding_round.matches(funding_round)
                    ),
                    None,
                )
                if existing is not None:
                    stored = existing.funding_round
                    existing.funding_round = stored.model_copy(
                        update={
                            "amount_usd": stored.amount_usd
                            if stored.amount_usd is not None
                            else funding_round.amount_usd,
                            "valuation_usd": stored.valuation_usd
                            if stored.valuation_usd is not None
                            else funding_round.valuation_usd,
                            "investors": stored.investors or funding_round.investors,
                        }
                    )
                    existing.source_id = existing.source_id or source_id
                else:
                    self.funding_rounds.append(
                        FundingRoundRow(
                            id=_new_id(),
                            company_id=company_id,
                            funding_round=funding_round,
                            source_id=source_id,
                        )
                    )
                upserted += 1
        return upserted

    def update_company_from_refresh(self, company_id: str, update: RefreshUpdate) -> None:
        with self._lock:
            for company in self.companies:
                if company.id == company_id:
                    for name, value in update.changes().items():
                        setattr(company, name, value)
                    return
        logger.warning("repository.refresh.missing_company", extra={"company_id": company_id})
