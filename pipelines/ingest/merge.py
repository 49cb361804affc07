"""Candidate de-duplication keyed by normalized company name.

Field precedence when two Candidates share a key:

| field                          | rule                                          |
|--------------------------------|-----------------------------------------------|
| sources                        | union by canonical URL, first record wins     |
| aliases                        | set union                                     |
| last_verified_at               | later timestamp; present beats absent         |
| people                         | union by normalized person name               |
| funding_rounds                 | union by round identity key                   |
| name and every other field     | first non-null value                          |

The identity-bearing parts (key, source URLs, aliases, timestamp, people and
round keys) are associative and commutative, so any partitioning of the input
merges to the same result.
"""

from __future__ import annotations

from collections.abc import Iterable

from labwatch.models.company import Candidate, FundingRound, Person
from labwatch.models.source import dedupe_sources
from labwatch.normalize import latest, merge_aliases

_FIRST_WINS_FIELDS = (
    "canonical_domain",
    "website_url",
    "description",
    "focus",
    "status",
    "employee_count",
    "known_revenue",
    "hq_location",
    "founded_year",
)


def _union_people(first: Iterable[Person], second: Iterable[Person]) -> list[Person]:
    merged: dict[str, Person] = {}
    for person in [*first, *second]:
        merged.setdefault(person.key, person)
    return list(merged.values())


def _union_rounds(first: Iterable[FundingRound], second: Iterable[FundingRound]) -> list[FundingRound]:
    merged: dict[tuple[object, ...], FundingRound] = {}
    for funding_round in [*first, *second]:
        merged.setdefault(funding_round.identity_key(), funding_round)
    return list(merged.values())


def merge_candidate_pair(first: Candidate, second: Candidate) -> Candidate:
    """Fold `second` into `first`; both must share a merge key."""
    if first.key != second.key:
        raise ValueError(f"Cannot merge candidates with different keys: {first.key} != {second.key}")
    updates: dict[str, object] = {
        field: getattr(second, field)
        for field in _FIRST_WINS_FIELDS
        if getattr(first, field) is None and getattr(second, field) is not None
    }
    return Candidate(
        **{
            **first.model_dump(exclude={"sources", "people", "funding_rounds"}),
            **updates,
            "aliases": merge_aliases(first.aliases, second.aliases),
            "last_verified_at": latest(first.last_verified_at, second.last_verified_at),
            "sources": dedupe_sources([*first.sources, *second.sources]),
            "people": _union_people(first.people, second.people),
            "funding_rounds": _union_rounds(first.funding_rounds, second.funding_rounds),
        }
    )


def merge_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Collapse Candidates by key, preserving first-seen order."""
    merged: dict[str, Candidate] = {}
    for candidate in candidates:
        existing = merged.get(candidate.key)
        merged[candidate.key] = merge_candidate_pair(existing, candidate) if existing else candidate
    return list(merged.values())
