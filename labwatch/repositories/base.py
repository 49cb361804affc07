"""Persistence contract for ingest and refresh pipelines."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from labwatch.models.company import Candidate, FundingRound, KnownCompany, Person, RefreshUpdate
from labwatch.models.source import Source


class RepositoryError(RuntimeError):
    """Raised when a repository cannot read or write records."""

    def __init__(self, message: str, code: str = "REPOSITORY_ERROR") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class UpsertResult:
    id: str
    created: bool


class IngestRepository(Protocol):
    """Upsert/list interface; every write is idempotent by natural key."""

    def list_companies(self) -> list[KnownCompany]:
        ...

    def upsert_company(self, candidate: Candidate) -> UpsertResult:
        ...

    def upsert_source(self, source: Source) -> UpsertResult:
        ...

    def link_company_source(self, company_id: str, source_id: str, kind: str) -> bool:
        ...

    def upsert_people(
        self, company_id: str, people: Sequence[Person], source_ids: Mapping[str, str]
    ) -> int:
        ...

    def upsert_funding_rounds(
        self, company_id: str, rounds: Sequence[FundingRound], source_ids: Mapping[str, str]
    ) -> int:
        ...

    def update_company_from_refresh(self, company_id: str, update: RefreshUpdate) -> None:
        ...
