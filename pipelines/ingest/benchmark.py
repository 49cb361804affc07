"""Recall measurement of candidate names against a curated benchmark list."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from labwatch.normalize import normalize_name

COMPARISON_STOP_WORDS = frozenset(
    {
        "lab",
        "labs",
        "laboratory",
        "laboratories",
        "inc",
        "llc",
        "ltd",
        "limited",
        "corp",
        "corporation",
        "company",
        "co",
        "holdings",
        "group",
    }
)

_WHITESPACE = re.compile(r"\s+")


class BenchmarkComparison(BaseModel):
    candidate_count: int = 0
    unique_candidate_count: int = 0
    known_count: int = 0
    matched: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    extras: list[str] = Field(default_factory=list)
    match_rate: float = 0.0
    weighted_match_rate: float = 0.0
    matched_weight: int = 0
    total_weight: int = 0


def normalize_for_comparison(value: str) -> str:
    """Normalized name with `-`/`&` expanded and corporate suffixes removed."""
    normalized = normalize_name(value)
    if not normalized:
        return ""
    expanded = normalized.replace("-", " ").replace("&", " and ")
    tokens = [token for token in expanded.split() if token not in COMPARISON_STOP_WORDS]
    return " ".join(tokens)


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE.sub("", value)


def _unique_entries(names: Iterable[str]) -> list[tuple[str, str]]:
    entries: list[tuple[str, str]] = []
    seen: set[str] = set()
    for name in names:
        normalized = normalize_for_comparison(name)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        entries.append((name, normalized))
    return entries


class NameLookup:
    """Membership test on normalized or whitespace-collapsed names."""

    def __init__(self, names: Iterable[str]) -> None:
        self.normalized: set[str] = set()
        self.collapsed: set[str] = set()
        for name in names:
            normalized = normalize_for_comparison(name)
            if normalized:
                self.normalized.add(normalized)
                self.collapsed.add(collapse_whitespace(normalized))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return self.contains_normalized(normalize_for_comparison(name))

    def contains_normalized(self, normalized: str) -> bool:
        if not normalized:
            return False
        return normalized in self.normalized or collapse_whitespace(normalized) in self.collapsed


def compare_candidates(
    candidate_names: Sequence[str], known_names: Sequence[str]
) -> BenchmarkComparison:
    """Compare candidates with the benchmark; later benchmark entries weigh more (rank 1..n)."""
    candidate_entries = _unique_entries(candidate_names)
    known_entries = _unique_entries(known_names)
    candidate_lookup = NameLookup(name for name, _ in candidate_entries)
    known_lookup = NameLookup(name for name, _ in known_entries)

    matched: list[str] = []
    missing: list[str] = []
    matched_weight = 0
    total_weight = sum(range(1, len(known_entries) + 1))
    for rank, (name, normalized) in enumerate(known_entries, start=1):
        if candidate_lookup.contains_normalized(normalized):
            matched.append(name)
            matched_weight += rank
        else:
            missing.append(name)

    extras = [
        name
        for name, normalized in candidate_entries
        if not known_lookup.contains_normalized(normalized)
    ]

    return BenchmarkComparison(
        candidate_count=len(candidate_names),
        unique_candidate_count=len(candidate_entries),
        known_count=len(known_entries),
        matched=matched,
        missing=missing,
        extras=extras,
        match_rate=len(matched) / len(known_entries) if known_entries else 0.0,
        weighted_match_rate=matched_weight / total_weight if total_weight else 0.0,
        matched_weight=matched_weight,
        total_weight=total_weight,
    )
