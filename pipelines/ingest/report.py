"""Ingest run report: benchmark comparison, settings and source provenance tallies."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from labwatch.config import IngestConfig
from labwatch.models.company import Candidate
from labwatch.models.source import Source
from labwatch.normalize import normalize_name
from pipelines.ingest.benchmark import BenchmarkComparison, NameLookup

logger = logging.getLogger("pipelines.ingest.report")

EXTRAS_SAMPLE_SIZE = 25


class SearchReport(BaseModel):
    topic: str
    depth: str
    max_results: int


class CandidateTotals(BaseModel):
    total: int = 0
    unique: int = 0


class BenchmarkReport(BaseModel):
    known_count: int = 0
    matched_count: int = 0
    match_rate: float = 0.0
    weighted_match_rate: float = 0.0
    matched_weight: int = 0
    total_weight: int = 0
    matched: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class ProvenanceReport(BaseModel):
    sources_by_origin: dict[str, int] = Field(default_factory=dict)
    sources_by_pipeline: dict[str, int] = Field(default_factory=dict)
    matched_by_origin: dict[str, int] = Field(default_factory=dict)
    matched_by_pipeline: dict[str, int] = Field(default_factory=dict)


class IngestReport(BaseModel):
    generated_at: datetime
    profile: str
    lookback_days: int
    search: SearchReport
    seed_mode: str
    entity_resolution_mode: str
    sources_config_version: str | None = None
    sources_config_sha256: str | None = None
    candidates: CandidateTotals
    benchmark: BenchmarkReport
    provenance: ProvenanceReport
    extras_sample: list[str] = Field(default_factory=list)


def _tally(values: Iterable[str]) -> dict[str, int]:
    return dict(Counter(values))


def _label(value: object | None) -> str:
    if value is None:
        return "unknown"
    return getattr(value, "value", str(value))


def build_ingest_report(
    candidates: Sequence[Candidate],
    sources: Sequence[Source],
    comparison: BenchmarkComparison,
    known_names: Sequence[str],
    config: IngestConfig,
    *,
    sources_config_version: str | None = None,
    sources_config_sha256: str | None = None,
    generated_at: datetime | None = None,
) -> IngestReport:
    unique = {key for key in (normalize_name(candidate.name) for candidate in candidates) if key}

    lookup = NameLookup(known_names)
    matched_origins: list[str] = []
    matched_pipelines: list[str] = []
    for candidate in candidates:
        if candidate.name not in lookup:
            continue
        # Sources without provenance add nothing to the matched tallies.
        matched_origins.extend(sorted({source.origin.value for source in candidate.sources if source.origin}))
        matched_pipelines.extend(
            sorted({source.pipeline.value for source in candidate.sources if source.pipeline})
        )

    return IngestReport(
        generated_at=generated_at or datetime.now(UTC),
        profile=config.profile.value,
        lookback_days=config.lookback_days,
        search=SearchReport(
            topic=config.search.topic,
            depth=config.search.depth,
            max_results=config.search.max_results,
        ),
        seed_mode=config.seed_mode.value,
        entity_resolution_mode=config.resolution_mode.value,
        sources_config_version=sources_config_version,
        sources_config_sha256=sources_config_sha256,
        candidates=CandidateTotals(total=len(candidates), unique=len(unique)),
        benchmark=BenchmarkReport(
            known_count=comparison.known_count,
            matched_count=len(comparison.matched),
            match_rate=comparison.match_rate,
            weighted_match_rate=comparison.weighted_match_rate,
            matched_weight=comparison.matched_weight,
            total_weight=comparison.total_weight,
            matched=list(comparison.matched),
            missing=list(comparison.missing),
        ),
        provenance=ProvenanceReport(
            sources_by_origin=_tally(_label(source.origin) for source in sources),
            sources_by_pipeline=_tally(_label(source.pipeline) for source in sources),
            matched_by_origin=_tally(matched_origins),
            matched_by_pipeline=_tally(matched_pipelines),
        ),
        extras_sample=list(comparison.extras[:EXTRAS_SAMPLE_SIZE]),
    )


def write_ingest_report(report: IngestReport, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2) + "\n", encoding="utf-8")
    logger.info("report.written", extra={"path": str(path)})
    return path


def _percent(value: float) -> int:
    return round(value * 100)


def render_report_summary(report: IngestReport) -> str:
    lines = [
        "## Ingestion Report",
        "",
        f"Profile: **{report.profile}**",
        f"Lookback: **{report.lookback_days} days**",
        f"Candidates: **{report.candidates.total}** (unique {report.candidates.unique})",
        f"Benchmark match: **{_percent(report.benchmark.match_rate)}%** | "
        f"weighted **{_percent(report.benchmark.weighted_match_rate)}%**",
        "",
        "**Matched (benchmark)**: " + (", ".join(report.benchmark.matched) or "none"),
        "**Missing (benchmark)**: " + (", ".join(report.benchmark.missing) or "none"),
        "",
        "### Provenance (Sources)",
        *(f"- {origin}: {count}" for origin, count in report.provenance.sources_by_origin.items()),
        "### Provenance (Matched)",
        *(f"- {origin}: {count}" for origin, count in report.provenance.matched_by_origin.items()),
    ]
    return "\n".join(lines) + "\n"


def write_report_summary(report: IngestReport, summary_path: Path | None) -> bool:
    """Append the markdown summary to a CI step-summary file; no-op without a path."""
    if summary_path is None:
        return False
    summary_path.parent.mkdir(parents=True, exist_ok=True)
    with summary_path.open("a", encoding="utf-8") as handle:
        handle.write(render_report_summary(report))
    return True
