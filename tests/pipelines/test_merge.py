from datetime import UTC, date, datetime

import pytest

from labwatch.models.company import Candidate, FundingRound, Person
from labwatch.models.source import Source, SourceOrigin, dedupe_sources, merge_sources
from pipelines.ingest.merge import merge_candidate_pair, merge_candidates

EARLY = datetime(2025, 1, 1, tzinfo=UTC)
LATE = datetime(2025, 2, 1, tzinfo=UTC)


def _identity(candidates: list[Candidate]) -> dict[str, tuple]:
    return {
        candidate.key: (
            frozenset(source.url for source in candidate.sources),
            frozenset(candidate.aliases),
            candidate.last_verified_at,
            frozenset(person.key for person in candidate.people),
            frozenset(round_.identity_key() for round_ in candidate.funding_rounds),
        )
        for candidate in candidates
    }


def test_merge_sources_fills_missing_fields_first_wins():
    first = Source(url="https://example.com/a?utm_source=x", title="First", kind="overview")
    second = Source(
        url="https://www.example.com/a/",
        title="Second",
        snippet="Snippet",
        kind="news",
        origin=SourceOrigin.SEARCH,
    )
    merged = merge_sources(first, second)
    assert merged.url == "https://example.com/a"
    assert merged.title == "First"
    assert merged.snippet == "Snippet"
    assert merged.kind == "overview"
    assert merged.origin is SourceOrigin.SEARCH


def test_merge_sources_rejects_different_urls():
    with pytest.raises(ValueError):
        merge_sources(Source(url="https://a.com/x"), Source(url="https://b.com/x"))


def test_dedupe_sources_preserves_first_seen_order():
    sources = [
        Source(url="https://b.com/1"),
        Source(url="https://a.com/1"),
        Source(url="https://b.com/1/", title="late title"),
    ]
    deduped = dedupe_sources(sources)
    assert [source.url for source in deduped] == ["https://b.com/1", "https://a.com/1"]
    assert deduped[0].title == "late title"


def test_candidate_name_is_always_an_alias():
    candidate = Candidate(name="Periodic Labs", aliases=["periodic"])
    assert "periodic labs" in candidate.aliases
    assert candidate.key == "periodic labs"


def test_merge_candidate_pair_combines_fields():
    first = Candidate(
        name="Acme Labs",
        focus="robotics",
        last_verified_at=EARLY,
        sources=[Source(url="https://news.com/1")],
        people=[Person(name="Ada Lovelace", is_founder=True)],
        funding_rounds=[FundingRound(round_type="Seed", announced_at=date(2025, 1, 1))],
    )
    second = Candidate(
        name="ACME Labs",
        focus="biology",
        canonical_domain="acme.ai",
        aliases=["acme"],
        last_verified_at=LATE,
        sources=[Source(url="https://news.com/1"), Source(url="https://news.com/2")],
        people=[Person(name="ada lovelace"), Person(name="Grace Hopper")],
        funding_rounds=[
            FundingRound(round_type="seed", announced_at=date(2025, 1, 1), amount_usd=5_000_000),
            FundingRound(round_type="Series A", amount_usd=20_000_000),
        ],
    )
    merged = merge_candidate_pair(first, second)
    assert merged.name == "Acme Labs"
    assert merged.focus == "robotics"
    assert merged.canonical_domain == "acme.ai"
    assert set(merged.aliases) == {"acme labs", "acme"}
    assert merged.last_verified_at == LATE
    assert [source.url for source in merged.sources] == ["https://news.com/1", "https://news.com/2"]
    assert [person.name for person in merged.people] == ["Ada Lovelace", "Grace Hopper"]
    assert len(merged.funding_rounds) == 2


def test_merge_candidate_pair_rejects_different_keys():
    with pytest.raises(ValueError):
        merge_candidate_pair(Candidate(name="Acme"), Candidate(name="Other"))


def test_merge_candidates_is_partition_independent():
    candidates = [
        Candidate(name="Acme", sources=[Source(url="https://a.com/1")], last_verified_at=EARLY),
        Candidate(name="Other Lab", sources=[Source(url="https://o.com/1")]),
        Candidate(name="acme", aliases=["acme ai"], sources=[Source(url="https://a.com/2")]),
        Candidate(
            name="ACME",
            last_verified_at=LATE,
            people=[Person(name="Founder One")],
            sources=[Source(url="https://a.com/1")],
        ),
    ]
    all_at_once = merge_candidates(candidates)
    in_halves = merge_candidates(
        [*merge_candidates(candidates[:2]), *merge_candidates(candidates[2:])]
    )
    reversed_order = merge_candidates(list(reversed(candidates)))

    assert [candidate.key for candidate in all_at_once] == ["acme", "other lab"]
    assert _identity(all_at_once) == _identity(in_halves) == _identity(reversed_order)


def test_merge_candidates_empty_input():
    assert merge_candidates([]) == []
