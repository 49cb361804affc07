import json
from datetime import UTC, datetime

import pytest

from labwatch.clients.tavily import SearchHit
from labwatch.clients.web import FetchError
from labwatch.config import IngestConfig, IngestProfile, ResolutionMode, SeedMode
from labwatch.models.company import KnownCompany
from labwatch.models.source import SourceOrigin, SourcePipeline
from labwatch.repositories.memory import InMemoryRepository
from pipelines import run_ingest as run_ingest_module
from pipelines.ingest.entity_resolution import EntityResolver
from pipelines.ingest.sources import SourceConfig
from pipelines.run_ingest import (
    known_company_queries,
    main,
    plan_pipelines,
    run_ingest,
    seed_queries,
)

NOW = datetime(2025, 10, 1, tzinfo=UTC)
FEED_URL = "https://techcrunch.com/feed/"
FEED_XML = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>TechCrunch</title>
  <item>
    <title>Periodic Labs raises $300M for its AI research lab</title>
    <link>https://techcrunch.com/2025/09/30/periodic-labs/</link>
    <pubDate>Tue, 30 Sep 2025 10:00:00 +0000</pubDate>
  </item>
</channel></rss>
"""


class StubFetcher:
    def __init__(self, documents):
        self.documents = documents

    def fetch_text(self, url, *, timeout=None):
        if url not in self.documents:
            raise FetchError(f"missing {url}", code="HTTP_404")
        return self.documents[url]


class StubSearch:
    def __init__(self, responses):
        self.responses = responses
        self.queries = []

    def search(self, *, query, **kwargs):
        self.queries.append(query)
        return list(self.responses.get(query, []))


def _sources() -> SourceConfig:
    return SourceConfig(version="test", rss_feeds=(FEED_URL,), discovery_pages=(), search_queries=())


@pytest.mark.parametrize(
    ("config", "expected"),
    [
        (IngestConfig(dry_run=True), [SourcePipeline.NEW_DISCOVERY]),
        (
            IngestConfig(dry_run=True, seed_mode=SeedMode.ALWAYS),
            [SourcePipeline.NEW_DISCOVERY, SourcePipeline.SEED_BOOTSTRAP],
        ),
        (
            IngestConfig(profile=IngestProfile.CUSTOM, seed_mode=SeedMode.BOOTSTRAP),
            [SourcePipeline.SEED_BOOTSTRAP],
        ),
        (IngestConfig(seed_mode=SeedMode.BOOTSTRAP), [SourcePipeline.KNOWN_UPDATES]),
        (
            IngestConfig(profile=IngestProfile.WEEKLY, seed_mode=SeedMode.ALWAYS),
            [SourcePipeline.KNOWN_UPDATES],
        ),
        (IngestConfig(profile=IngestProfile.WEEKLY), [SourcePipeline.KNOWN_UPDATES]),
        (
            IngestConfig(profile=IngestProfile.BENCHMARK, seed_mode=SeedMode.ALWAYS),
            [SourcePipeline.KNOWN_UPDATES, SourcePipeline.NEW_DISCOVERY, SourcePipeline.SEED_BOOTSTRAP],
        ),
    ],
)
def test_plan_pipelines(config, expected):
    assert plan_pipelines(config) == expected


def test_query_builders_respect_limits():
    company = KnownCompany(id="c1", name="Periodic Labs", canonical_domain="periodic.com")
    assert known_company_queries(company, 1) == ['"Periodic Labs" AI lab']
    assert known_company_queries(company, 5)[-1] == '"periodic.com"'
    assert seed_queries("World Labs", 0) == ['"World Labs" AI lab']
    assert len(seed_queries("World Labs", 3)) == 3


def test_dry_run_discovers_and_seeds_without_persisting():
    repository = InMemoryRepository()
    config = IngestConfig(dry_run=True, seed_mode=SeedMode.ALWAYS, lookback_days=30)
    result = run_ingest(
        config,
        sources=_sources(),
        fetcher=StubFetcher({FEED_URL: FEED_XML}),
        search_client=None,
        resolver=EntityResolver(ResolutionMode.OFF),
        repository=repository,
        seed_names=["World Labs", "periodic labs"],
        benchmark_names=["Periodic Labs", "World Labs", "Missing Lab"],
        clock=lambda: NOW,
    )
    names = [candidate.name for candidate in result.candidates]
    assert names == ["Periodic Labs", "World Labs"]
    assert result.summary is None
    assert repository.companies == []
    assert result.comparison.matched == ["Periodic Labs", "World Labs"]
    assert result.comparison.missing == ["Missing Lab"]
    assert result.report.generated_at == NOW
    assert result.report.sources_config_version == "test"


def test_weekly_run_refreshes_known_companies_and_persists():
    repository = InMemoryRepository(
        [KnownCompany(id="c1", name="Periodic Labs", aliases=["periodic labs"])]
    )
    search = StubSearch(
        {
            '"Periodic Labs" AI lab': [
                SearchHit(
                    title="Periodic Labs hires ex-OpenAI researchers",
                    url="https://techcrunch.com/periodic-hires",
                    published_at=datetime(2025, 9, 29, tzinfo=UTC),
                ),
                SearchHit(title="Unrelated story", url="https://techcrunch.com/other"),
            ]
        }
    )
    result = run_ingest(
        IngestConfig(profile=IngestProfile.WEEKLY),
        sources=_sources(),
        fetcher=StubFetcher({}),
        search_client=search,
        resolver=EntityResolver(ResolutionMode.OFF),
        repository=repository,
        clock=lambda: NOW,
    )
    assert result.pipelines == [SourcePipeline.KNOWN_UPDATES]
    (candidate,) = result.candidates
    assert [source.url for source in candidate.sources] == ["https://techcrunch.com/periodic-hires"]
    assert candidate.sources[0].origin is SourceOrigin.SEARCH
    assert result.summary.companies_updated == 1
    assert result.summary.companies_created == 0
    (company,) = repository.list_companies()
    assert company.last_verified_at == datetime(2025, 9, 29, tzinfo=UTC)
    assert len(repository.company_sources) == 1


def test_main_fails_fast_without_database_url(caplog):
    assert main([]) == 1
    assert any("DATABASE_URL_MISSING" in record.getMessage() for record in caplog.records)


def test_main_rejects_invalid_sources_config(tmp_path):
    bad = tmp_path / "sources.yaml"
    bad.write_text("rss_feeds: []\n")
    assert main(["--dry-run", "--sources-config", str(bad)]) == 1


def test_main_dry_run_writes_report(tmp_path, monkeypatch):
    captured = {}

    def fake_run_ingest(config, **kwargs):
        captured["config"] = config
        captured["repository"] = kwargs["repository"]
        return run_ingest(
            config,
            **{
                **kwargs,
                "fetcher": StubFetcher({FEED_URL: FEED_XML}),
                "sources": _sources(),
                "search_client": None,
                "clock": lambda: NOW,
            },
        )

    monkeypatch.setattr(run_ingest_module, "run_ingest", fake_run_ingest)
    report_path = tmp_path / "out" / "report.json"
    summary_path = tmp_path / "summary.md"
    monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(summary_path))
    telemetry_path = tmp_path / "telemetry.jsonl"
    monkeypatch.setenv("TELEMETRY_FORMAT", "json")
    monkeypatch.setenv("TELEMETRY_PATH", str(telemetry_path))

    assert main(["--compare", "--report", str(report_path)]) == 0
    assert captured["config"].dry_run
    assert captured["repository"] is None
    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert payload["profile"] == "weekly"
    assert summary_path.read_text(encoding="utf-8").startswith("## Ingestion Report")
    event = json.loads(telemetry_path.read_text(encoding="utf-8").splitlines()[-1])
    assert event["module"] == "ingest"
    assert event["event"] == "run_completed"
    assert event["status"] == "ok"
    assert event["dry_run"] is True
