"""Weekly ingest entrypoint: collect, resolve, merge, persist and report candidates."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from labwatch.clients.llm import ChatJSONClient, MistralChatClient
from labwatch.clients.tavily import TavilyClient
from labwatch.clients.web import PageFetcher
from labwatch.config import (
    ConfigurationError,
    IngestConfig,
    IngestProfile,
    ResolutionMode,
    SeedMode,
    Settings,
    require_database_url,
)
from labwatch.models.company import Candidate, KnownCompany
from labwatch.models.source import Source, SourceOrigin, SourcePipeline, dedupe_sources
from labwatch.normalize import latest
from labwatch.repositories.base import IngestRepository
from labwatch.repositories.sql import SqlRepository
from pipelines.ingest.benchmark import BenchmarkComparison, compare_candidates
from pipelines.ingest.collector import SearchClient, SourceCollector
from pipelines.ingest.entity_resolution import EntityResolver
from pipelines.ingest.merge import merge_candidates
from pipelines.ingest.parse import SourceParser, parse_sources
from pipelines.ingest.persist import IngestSummary, ingest_candidates
from pipelines.ingest.report import (
    IngestReport,
    build_ingest_report,
    write_ingest_report,
    write_report_summary,
)
from pipelines.ingest.rss import TextFetcher
from pipelines.ingest.seed import load_name_list
from pipelines.ingest.sources import (
    DEFAULT_SOURCE_CONFIG,
    SourceConfig,
    SourceConfigError,
    load_source_config,
)
from tools.telemetry import INGEST_JOB, TelemetryConfig, configure_telemetry, get_telemetry

logger = logging.getLogger("pipelines.run_ingest")


@dataclass
class PipelineOutput:
    pipeline: SourcePipeline
    candidates: list[Candidate] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)


@dataclass
class IngestRunResult:
    pipelines: list[SourcePipeline]
    candidates: list[Candidate]
    sources: list[Source]
    comparison: BenchmarkComparison
    report: IngestReport
    summary: IngestSummary | None = None


def plan_pipelines(config: IngestConfig) -> list[SourcePipeline]:
    """Pick the acquisition pipelines for a run from profile, seed mode and dry-run flag."""
    seeds = [SourcePipeline.SEED_BOOTSTRAP] if config.seed_mode is SeedMode.ALWAYS else []
    if config.dry_run:
        return [SourcePipeline.NEW_DISCOVERY, *seeds]
    if config.profile is IngestProfile.WEEKLY:
        return [SourcePipeline.KNOWN_UPDATES]
    if config.seed_mode is SeedMode.BOOTSTRAP:
        return [SourcePipeline.SEED_BOOTSTRAP]
    return [SourcePipeline.KNOWN_UPDATES, SourcePipeline.NEW_DISCOVERY, *seeds]


def known_company_queries(company: KnownCompany, limit: int) -> list[str]:
    queries = [f'"{company.name}" AI lab', f'"{company.name}" funding']
    if company.canonical_domain:
        queries.append(f'"{company.canonical_domain}"')
    return queries[: max(limit, 1)]


def seed_queries(name: str, limit: int) -> list[str]:
    queries = [f'"{name}" AI lab', f'"{name}" funding', f'"{name}" founders']
    return queries[: max(limit, 1)]


def _latest_published(sources: Sequence[Source]) -> datetime | None:
    stamp: datetime | None = None
    for source in sources:
        stamp = latest(stamp, source.published_at)
    return stamp


def run_known_updates(
    companies: Sequence[KnownCompany], collector: SourceCollector, config: IngestConfig
) -> PipelineOutput:
    """Targeted searches for companies already in the store, stalest first."""
    output = PipelineOutput(pipeline=SourcePipeline.KNOWN_UPDATES)
    ordered = sorted(
        companies,
        key=lambda company: company.last_verified_at.timestamp() if company.last_verified_at else 0.0,
    )
    if config.known_max:
        ordered = ordered[: config.known_max]
    for company in ordered:
        sources = collector.search_subject(
            [company.name, *company.aliases],
            queries=known_company_queries(company, config.known_query_limit),
            origin=SourceOrigin.SEARCH,
            pipeline=SourcePipeline.KNOWN_UPDATES,
        )
        if not sources:
            continue
        output.sources.extend(sources)
        output.candidates.append(
            Candidate(
                name=company.name,
                canonical_domain=company.canonical_domain,
                website_url=company.website_url,
                aliases=list(company.aliases),
                last_verified_at=_latest_published(sources),
                sources=sources,
            )
        )
    logger.info(
        "pipeline.known_updates.completed",
        extra={"companies": len(ordered), "candidates": len(output.candidates)},
    )
    return output


def run_new_discovery(
    collector: SourceCollector, parser: SourceParser, config: IngestConfig
) -> PipelineOutput:
    sources = collector.collect(SourcePipeline.NEW_DISCOVERY)
    candidates = parse_sources(sources, parser, concurrency=config.concurrency)
    return PipelineOutput(
        pipeline=SourcePipeline.NEW_DISCOVERY, candidates=candidates, sources=sources
    )


def run_seed_bootstrap(
    seed_names: Sequence[str], collector: SourceCollector, config: IngestConfig
) -> PipelineOutput:
    """One Candidate per seed name, carrying any matching search results."""
    output = PipelineOutput(pipeline=SourcePipeline.SEED_BOOTSTRAP)
    names = list(seed_names)
    if config.seed_max_results:
        names = names[: config.seed_max_results]
    for name in names:
        sources = collector.search_subject(
            [name],
            queries=seed_queries(name, config.seed_query_limit),
            origin=SourceOrigin.SEED_SEARCH,
            pipeline=SourcePipeline.SEED_BOOTSTRAP,
        )
        output.sources.extend(sources)
        output.candidates.append(
            Candidate(name=name, last_verified_at=_latest_published(sources), sources=sources)
        )
    logger.info("pipeline.seed_bootstrap.completed", extra={"seeds": len(names)})
    return output


def run_ingest(
    config: IngestConfig,
    *,
    sources: SourceConfig,
    fetcher: TextFetcher,
    search_client: SearchClient | None,
    resolver: EntityResolver,
    repository: IngestRepository | None,
    seed_names: Sequence[str] = (),
    benchmark_names: Sequence[str] = (),
    clock: Callable[[], datetime] | None = None,
) -> IngestRunResult:
    pipelines = plan_pipelines(config)
    collector = SourceCollector(
        config=config, sources=sources, fetcher=fetcher, search_client=search_client, clock=clock
    )
    parser = SourceParser(
        fetcher=fetcher, resolver=resolver, sources=sources, fetch_timeout=config.fetch_timeout
    )
    logger.info(
        "ingest.started",
        extra={
            "profile": config.profile.value,
            "pipelines": [pipeline.value for pipeline in pipelines],
            "dry_run": config.dry_run,
        },
    )

    outputs: list[PipelineOutput] = []
    for pipeline in pipelines:
        if pipeline is SourcePipeline.KNOWN_UPDATES:
            known = repository.list_companies() if repository is not None else []
            outputs.append(run_known_updates(known, collector, config))
        elif pipeline is SourcePipeline.NEW_DISCOVERY:
            outputs.append(run_new_discovery(collector, parser, config))
        else:
            outputs.append(run_seed_bootstrap(seed_names, collector, config))

    all_candidates = [candidate for output in outputs for candidate in output.candidates]
    all_sources = dedupe_sources(source for output in outputs for source in output.sources)
    candidates = merge_candidates(all_candidates)

    summary: IngestSummary | None = None
    if not config.dry_run and repository is not None:
        summary = ingest_candidates(repository, candidates)

    comparison = compare_candidates([candidate.name for candidate in candidates], benchmark_names)
    report = build_ingest_report(
        candidates,
        all_sources,
        comparison,
        benchmark_names,
        config,
        sources_config_version=sources.version,
        sources_config_sha256=sources.sha256,
        generated_at=(clock or (lambda: datetime.now(UTC)))(),
    )
    return IngestRunResult(
        pipelines=pipelines,
        candidates=candidates,
        sources=all_sources,
        comparison=comparison,
        report=report,
        summary=summary,
    )


def _load_names(path: str, label: str) -> list[str]:
    try:
        return load_name_list(path)
    except FileNotFoundError:
        logger.warning("ingest.list.missing", extra={"list": label, "path": path})
        return []


def build_search_client(settings: Settings) -> TavilyClient | None:
    if (settings.search_provider or "").strip().lower() != "tavily":
        logger.warning(
            "ingest.search.unsupported_provider", extra={"provider": settings.search_provider}
        )
        return None
    if not settings.search_api_key:
        return None
    return TavilyClient(settings.search_api_key)


def build_llm_client(settings: Settings, config: IngestConfig) -> ChatJSONClient | None:
    if config.resolution_mode is ResolutionMode.OFF or not settings.mistral_api_key:
        return None
    return MistralChatClient(
        settings.mistral_api_key,
        model=settings.mistral_model,
        base_url=settings.mistral_base_url,
        timeout=settings.mistral_timeout_seconds,
    )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect and persist AI research lab candidates.")
    parser.add_argument("--dry-run", action="store_true", help="Skip persistence.")
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Benchmark comparison only (implies --dry-run).",
    )
    parser.add_argument(
        "--profile",
        choices=[profile.value for profile in IngestProfile],
        help="Override INGEST_PROFILE.",
    )
    parser.add_argument("--report", type=Path, help="Override INGEST_REPORT_PATH.")
    parser.add_argument("--sources-config", type=Path, help="YAML source list override.")
    parser.add_argument(
        "--print-candidates", action="store_true", help="Print merged candidate names."
    )
    return parser.parse_args(argv)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.dry_run:
        overrides["ingest_dry_run"] = True
    if args.compare:
        overrides["ingest_mode"] = "compare"
    if args.profile:
        overrides["ingest_profile"] = args.profile
    if args.report:
        overrides["ingest_report_path"] = str(args.report)
    if args.sources_config:
        overrides["ingest_sources_config"] = str(args.sources_config)
    if args.print_candidates:
        overrides["ingest_print_candidates"] = True
    settings = Settings()
    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    started_at = datetime.now(UTC)
    settings = _settings_from_args(args)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    configure_telemetry(TelemetryConfig.build(settings.telemetry_format, settings.telemetry_path))
    config = IngestConfig.from_settings(settings)

    try:
        database_url = require_database_url(settings, config)
        sources = (
            load_source_config(Path(settings.ingest_sources_config))
            if settings.ingest_sources_config
            else DEFAULT_SOURCE_CONFIG
        )
    except (ConfigurationError, SourceConfigError) as exc:
        logger.error("ingest failed: %s (code=%s)", exc, exc.code)
        return 1

    try:
        with ExitStack() as stack:
            fetcher = stack.enter_context(PageFetcher(timeout=config.fetch_timeout))
            search_client = build_search_client(settings)
            if search_client is not None:
                stack.enter_context(search_client)
            repository: SqlRepository | None = None
            if not config.dry_run and database_url:
                repository = SqlRepository(database_url)
                stack.callback(repository.dispose)
            result = run_ingest(
                config,
                sources=sources,
                fetcher=fetcher,
                search_client=search_client,
                resolver=EntityResolver(config.resolution_mode, build_llm_client(settings, config)),
                repository=repository,
                seed_names=_load_names(settings.ingest_seed_path, "seed"),
                benchmark_names=_load_names(settings.ingest_benchmark_path, "benchmark"),
            )
    except Exception as exc:  # pragma: no cover - final safeguard
        logger.exception("Unexpected ingest failure: %s", exc)
        return 1

    write_ingest_report(result.report, config.report_path)
    write_report_summary(result.report, config.step_summary_path)
    if config.print_candidates:
        for candidate in result.candidates:
            print(candidate.name)

    summary = result.summary.as_dict() if result.summary else {}
    get_telemetry().emit_run_completed(
        INGEST_JOB,
        counts=summary,
        started_at=started_at,
        pipelines=[pipeline.value for pipeline in result.pipelines],
        sources=len(result.sources),
        candidates=len(result.candidates),
        match_rate=round(result.comparison.match_rate, 4),
        weighted_match_rate=round(result.comparison.weighted_match_rate, 4),
        dry_run=config.dry_run,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
