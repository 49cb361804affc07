from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Fatal configuration problem detected before any work starts."""

    def __init__(self, message: str, code: str = "CONFIG_ERROR") -> None:
        super().__init__(message)
        self.code = code


class IngestProfile(str, Enum):
    WEEKLY = "weekly"
    BENCHMARK = "benchmark"
    CUSTOM = "custom"


class SeedMode(str, Enum):
    OFF = "off"
    BOOTSTRAP = "bootstrap"
    ALWAYS = "always"


class ResolutionMode(str, Enum):
    OFF = "off"
    HYBRID = "hybrid"
    LLM = "llm"


class Settings(BaseSettings):
    """Process settings loaded from environment variables and `.env`."""

    # Runtime
    log_level: str = "INFO"
    telemetry_format: str = "text"
    telemetry_path: str | None = None
    github_step_summary: str | None = None

    # Persistence
    database_url: str | None = None

    # Ingest profile
    ingest_profile: str = "weekly"
    ingest_lookback_days: int | None = None
    ingest_force_search: bool = False
    ingest_tavily_topic: str | None = None
    ingest_tavily_depth: str | None = None
    ingest_tavily_max_results: int | None = None
    ingest_seed_mode: str = "off"
    ingest_seed_max_results: int | None = None
    ingest_known_max: int | None = None
    ingest_known_query_limit: int | None = None
    ingest_seed_query_limit: int | None = None
    ingest_allowlist_followup: bool = True
    ingest_report_path: str = "artifacts/ingest-report.json"
    ingest_dry_run: bool = False
    ingest_mode: str | None = None
    ingest_print_candidates: bool = False
    ingest_sources_config: str | None = None
    ingest_seed_path: str = "benchmarks/seed-universe.txt"
    ingest_benchmark_path: str = "benchmarks/known-neolabs.txt"
    entity_resolution_mode: str = "off"

    # Fetching
    fetch_timeout_seconds: float = 10.0
    fetch_concurrency: int = 4
    max_sources_to_parse: int = 400

    # Providers
    search_provider: str = "tavily"
    search_api_key: str | None = None
    mistral_api_key: str | None = None
    mistral_model: str = "mistral-large-latest"
    mistral_base_url: str = "https://api.mistral.ai/v1"
    mistral_timeout_seconds: float = 15.0
    parallel_api_key: str | None = None
    parallel_base_url: str = "https://api.parallel.ai"
    parallel_processor: str = "core"
    parallel_group_poll_interval_seconds: float = 5.0
    parallel_group_max_poll_attempts: int = 240
    parallel_group_max_wait_seconds: int | None = None

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator(
        "ingest_lookback_days",
        "ingest_tavily_max_results",
        "ingest_seed_max_results",
        "ingest_known_max",
        "ingest_known_query_limit",
        "ingest_seed_query_limit",
        "parallel_group_max_wait_seconds",
        mode="before",
    )
    @classmethod
    def _positive_or_none(cls, value: Any) -> int | None:
        return _coerce_positive_int(value)


def _coerce_positive_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed <= 0:
        return None
    return int(parsed)


def _choice(enum: type[Enum], raw: str | None, default: Enum) -> Any:
    if raw:
        try:
            return enum(raw.strip().lower())
        except ValueError:
            return default
    return default


_PROFILE_LOOKBACK_DAYS = {
    IngestProfile.WEEKLY: 7,
    IngestProfile.BENCHMARK: 365,
    IngestProfile.CUSTOM: 14,
}


@dataclass(frozen=True)
class SearchSettings:
    topic: str = "news"
    depth: str = "basic"
    max_results: int = 5

    @classmethod
    def for_profile(
        cls,
        profile: IngestProfile,
        *,
        topic: str | None = None,
        depth: str | None = None,
        max_results: int | None = None,
    ) -> SearchSettings:
        if profile in (IngestProfile.WEEKLY, IngestProfile.BENCHMARK):
            defaults = cls(topic="general", depth="advanced", max_results=10)
        else:
            defaults = cls()
        topic_value = (topic or "").strip().lower()
        depth_value = (depth or "").strip().lower()
        return cls(
            topic=topic_value if topic_value in {"news", "general"} else defaults.topic,
            depth=depth_value if depth_value in {"basic", "advanced"} else defaults.depth,
            max_results=max_results or defaults.max_results,
        )


@dataclass(frozen=True)
class IngestConfig:
    """Resolved ingest configuration passed explicitly into every pipeline component."""

    profile: IngestProfile = IngestProfile.WEEKLY
    lookback_days: int = 7
    search: SearchSettings = field(default_factory=SearchSettings)
    force_search: bool = False
    seed_mode: SeedMode = SeedMode.OFF
    seed_max_results: int | None = None
    known_max: int | None = None
    known_query_limit: int = 1
    seed_query_limit: int = 1
    resolution_mode: ResolutionMode = ResolutionMode.OFF
    allowlist_followup: bool = True
    report_path: Path = Path("artifacts/ingest-report.json")
    step_summary_path: Path | None = None
    dry_run: bool = False
    compare_only: bool = False
    print_candidates: bool = False
    fetch_timeout: float = 10.0
    concurrency: int = 4
    max_sources_to_parse: int = 400

    @classmethod
    def from_settings(cls, settings: Settings) -> IngestConfig:
        profile = _choice(IngestProfile, settings.ingest_profile, IngestProfile.WEEKLY)
        compare_only = (settings.ingest_mode or "").strip().lower() == "compare"
        return cls(
            profile=profile,
            lookback_days=settings.ingest_lookback_days or _PROFILE_LOOKBACK_DAYS[profile],
            search=SearchSettings.for_profile(
                profile,
                topic=settings.ingest_tavily_topic,
                depth=settings.ingest_tavily_depth,
                max_results=settings.ingest_tavily_max_results,
            ),
            force_search=settings.ingest_force_search,
            seed_mode=_choice(SeedMode, settings.ingest_seed_mode, SeedMode.OFF),
            seed_max_results=settings.ingest_seed_max_results,
            known_max=settings.ingest_known_max,
            known_query_limit=settings.ingest_known_query_limit or 1,
            seed_query_limit=settings.ingest_seed_query_limit or 1,
            resolution_mode=_choice(
                ResolutionMode, settings.entity_resolution_mode, ResolutionMode.OFF
            ),
            allowlist_followup=settings.ingest_allowlist_followup,
            report_path=Path(settings.ingest_report_path),
            step_summary_path=Path(settings.github_step_summary)
            if settings.github_step_summary
            else None,
            dry_run=settings.ingest_dry_run or compare_only,
            compare_only=compare_only,
            print_candidates=settings.ingest_print_candidates,
            fetch_timeout=settings.fetch_timeout_seconds
            if settings.fetch_timeout_seconds > 0
            else 10.0,
            concurrency=max(settings.fetch_concurrency, 1),
            max_sources_to_parse=max(settings.max_sources_to_parse, 1),
        )


def require_database_url(settings: Settings, config: IngestConfig) -> str | None:
    """Return the database URL, failing fast when persistence needs one."""
    if config.dry_run:
        return settings.database_url
    if not settings.database_url:
        raise ConfigurationError(
            "DATABASE_URL is required unless INGEST_DRY_RUN=1 or INGEST_MODE=compare.",
            code="DATABASE_URL_MISSING",
        )
    return settings.database_url
