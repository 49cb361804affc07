"""Refresh entrypoint: re-research known companies and reconcile the results."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from labwatch.clients.parallel import ParallelClient
from labwatch.config import ConfigurationError, Settings
from labwatch.repositories.base import IngestRepository, RepositoryError
from labwatch.repositories.sql import SqlRepository
from pipelines.refresh.reconcile import REFRESH_SOURCE_KIND, reconcile
from pipelines.refresh.research_tasks import BatchState, ResearchProvider, ResearchTaskRunner
from tools.backoff import SleepFn
from tools.telemetry import REFRESH_JOB, TelemetryConfig, configure_telemetry, get_telemetry

logger = logging.getLogger("pipelines.run_refresh")


@dataclass
class RefreshSummary:
    companies: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    sources_upserted: int = 0
    funding_rounds_upserted: int = 0
    batch_state: str = BatchState.SUBMITTED.value

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def run_refresh(
    repository: IngestRepository,
    provider: ResearchProvider,
    *,
    limit: int | None = None,
    poll_interval: float = 5.0,
    max_poll_attempts: int = 240,
    max_wait_seconds: float | None = None,
    sleep: SleepFn | None = None,
    clock: Callable[[], datetime] | None = None,
    poll_clock: Callable[[], float] | None = None,
) -> RefreshSummary:
    """Research every known company (stalest first) and apply reconciled updates.

    Companies without a completed research result are counted as skipped; a
    write failure for one company is counted as failed and the rest continue.
    """
    companies = repository.list_companies()
    if limit:
        companies = companies[:limit]
    summary = RefreshSummary(companies=len(companies))

    runner = ResearchTaskRunner(
        provider,
        poll_interval=poll_interval,
        max_poll_attempts=max_poll_attempts,
        max_wait_seconds=max_wait_seconds,
        sleep=sleep,
        clock=poll_clock,
    )
    batch = runner.run(companies)
    summary.batch_state = batch.state.value

    for company in companies:
        outcome = reconcile(company, batch.results.get(company.id), clock=clock)
        if outcome.update is None:
            summary.skipped += 1
            continue
        try:
            repository.update_company_from_refresh(company.id, outcome.update)
            source_ids: dict[str, str] = {}
            for source in outcome.sources:
                upserted = repository.upsert_source(source)
                source_ids[source.url] = upserted.id
                repository.link_company_source(company.id, upserted.id, REFRESH_SOURCE_KIND)
                summary.sources_upserted += 1
            if outcome.funding_rounds:
                summary.funding_rounds_upserted += repository.upsert_funding_rounds(
                    company.id, outcome.funding_rounds, source_ids
                )
        except RepositoryError as exc:
            summary.failed += 1
            logger.warning(
                "refresh.company.failed",
                extra={"company_id": company.id, "code": exc.code, "error": str(exc)},
            )
            continue
        summary.refreshed += 1

    if batch.state in (BatchState.TIMED_OUT, BatchState.FAILED):
        summary.failed += summary.skipped
        summary.skipped = 0
    logger.info("refresh.completed", extra=summary.as_dict())
    return summary


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh known companies via deep research.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum companies to refresh.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    started_at = datetime.now(UTC)
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    configure_telemetry(TelemetryConfig.build(settings.telemetry_format, settings.telemetry_path))

    try:
        if not settings.database_url:
            raise ConfigurationError(
                "DATABASE_URL is required for refresh.", code="DATABASE_URL_MISSING"
            )
        if not settings.parallel_api_key:
            raise ConfigurationError(
                "PARALLEL_API_KEY is required for refresh.", code="PARALLEL_API_KEY_MISSING"
            )
    except ConfigurationError as exc:
        logger.error("refresh failed: %s (code=%s)", exc, exc.code)
        return 1

    repository = SqlRepository(settings.database_url)
    try:
        with ParallelClient(
            settings.parallel_api_key,
            base_url=settings.parallel_base_url,
            processor=settings.parallel_processor,
        ) as provider:
            summary = run_refresh(
                repository,
                provider,
                limit=args.limit,
                poll_interval=settings.parallel_group_poll_interval_seconds,
                max_poll_attempts=settings.parallel_group_max_poll_attempts,
                max_wait_seconds=settings.parallel_group_max_wait_seconds,
            )
    except Exception as exc:  # pragma: no cover - final safeguard
        logger.exception("Unexpected refresh failure: %s", exc)
        return 1
    finally:
        repository.dispose()

    get_telemetry().emit_run_completed(REFRESH_JOB, counts=summary.as_dict(), started_at=started_at)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
