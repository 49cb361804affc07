import pytest

from labwatch.models.company import KnownCompany
from pipelines.ingest import entity_resolution
from tools import telemetry

_ENV_KEYS = (
    "DATABASE_URL",
    "SEARCH_API_KEY",
    "MISTRAL_API_KEY",
    "PARALLEL_API_KEY",
    "INGEST_PROFILE",
    "INGEST_DRY_RUN",
    "INGEST_MODE",
    "INGEST_SEED_MODE",
    "INGEST_REPORT_PATH",
    "INGEST_SOURCES_CONFIG",
    "ENTITY_RESOLUTION_MODE",
    "GITHUB_STEP_SUMMARY",
    "TELEMETRY_FORMAT",
    "TELEMETRY_PATH",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    """Keep developer `.env` files and exported secrets out of the tests."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    telemetry.reset_telemetry_for_testing()
    entity_resolution.reset_missing_key_warning()
    yield
    telemetry.reset_telemetry_for_testing()


@pytest.fixture
def known_companies():
    return [
        KnownCompany(id="c1", name="Periodic Labs", aliases=["periodic labs"]),
        KnownCompany(id="c2", name="World Labs", aliases=["world labs"]),
    ]
