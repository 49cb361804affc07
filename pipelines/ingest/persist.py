"""Upsert merged Candidates and their evidence through an IngestRepository."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass

from labwatch.models.company import Candidate
from labwatch.repositories.base import IngestRepository, RepositoryError

logger = logging.getLogger("pipelines.ingest.persist")


@dataclass
class IngestSummary:
    companies_created: int = 0
    companies_updated: int = 0
    sources_upserted: int = 0
    company_sources_linked: int = 0
    people_upserted: int = 0
    funding_rounds_upserted: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def ingest_candidates(
    repository: IngestRepository, candidates: Sequence[Candidate]
) -> IngestSummary:
    """Persist sources first, then each company with its links, people and rounds.

    A failure while writing one candidate is logged and counted; the remaining
    candidates are still written.
    """
    summary = IngestSummary()
    source_ids: dict[str, str] = {}

    for candidate in candidates:
        for source in candidate.sources:
            if source.url in source_ids:
                continue
            try:
                result = repository.upsert_source(source)
            except RepositoryError as exc:
                logger.warning(
                    "persist.source.failed",
                    extra={"url": source.url, "code": exc.code, "error": str(exc)},
                )
                continue
            source_ids[source.url] = result.id
            summary.sources_upserted += 1

    for candidate in candidates:
        try:
            company = repository.upsert_company(candidate)
            if company.created:
                summary.companies_created += 1
            else:
                summary.companies_updated += 1
            for source in candidate.sources:
                source_id = source_ids.get(source.url)
                if source_id and repository.link_company_source(company.id, source_id, source.kind):
                    summary.company_sources_linked += 1
            if candidate.people:
                summary.people_upserted += repository.upsert_people(
                    company.id, candidate.people, source_ids
                )
            if candidate.funding_rounds:
                summary.funding_rounds_upserted += repository.upsert_funding_rounds(
                    company.id, candidate.funding_rounds, source_ids
                )
        except RepositoryError as exc:
            summary.failed += 1
            logger.warning(
                "persist.company.failed",
                extra={"company": candidate.name, "code": exc.code, "error": str(exc)},
            )

    logger.info("persist.completed", extra=summary.as_dict())
    return summary
