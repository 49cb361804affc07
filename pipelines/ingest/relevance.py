"""Lexicon-based topical relevance for AI research-lab coverage."""

from __future__ import annotations

from typing import NamedTuple

from labwatch.normalize import normalize_whitespace

POSITIVE_PHRASES: tuple[tuple[str, int], ...] = (
    ("research lab", 4),
    ("ai lab", 4),
    ("ai research", 3),
    ("research institute", 4),
    ("research", 2),
    ("laboratory", 2),
    ("institute", 2),
    ("lab", 2),
    ("foundation model", 4),
    ("foundational model", 3),
    ("frontier model", 3),
    ("frontier", 2),
    ("model", 1),
    ("agent", 1),
    ("robotics", 1),
    ("stealth", 2),
    ("emerges from stealth", 4),
    ("superintelligence", 3),
    ("alignment", 2),
    ("safety", 2),
    ("agi", 3),
    ("raises", 3),
    ("raised", 3),
    ("seed", 2),
    ("series a", 2),
    ("series b", 2),
    ("funding", 2),
    ("round", 1),
    ("startup", 2),
    ("founded", 1),
    ("ex-openai", 3),
    ("ex deepmind", 3),
    ("deepmind", 1),
    ("openai", 1),
)

NEGATIVE_PHRASES: tuple[tuple[str, int], ...] = (
    ("supreme court", 8),
    ("court", 5),
    ("government", 4),
    ("regulator", 3),
    ("whatsapp", 6),
    ("waymo", 6),
    ("spacex", 6),
    ("tesla", 5),
    ("microsoft", 5),
    ("google", 5),
    ("meta", 5),
    ("elon musk", 5),
    ("plans", 2),
    ("preview", 2),
    ("review", 2),
    ("opinion", 2),
    ("podcast", 2),
)

INTERROGATIVE_PREFIXES = ("how to ", "why ", "what ")
INTERROGATIVE_PENALTY = 2

HARD_REJECT_TERMS = (
    "supreme court",
    "court",
    "government",
    "railway",
    "valley",
    "plans",
    "whatsapp",
    "waymo",
    "spacex",
)
MAX_NAME_LENGTH = 60
MAX_NAME_WORDS = 6


class RelevanceScore(NamedTuple):
    score: int
    reasons: list[str]


def score_relevance(title: str | None, snippet: str | None = None) -> RelevanceScore:
    """Signed lexicon score; each phrase counts at most once."""
    normalized_title = normalize_whitespace(title or "").lower()
    normalized_snippet = normalize_whitespace(snippet or "").lower()
    text = f"{normalized_title} {normalized_snippet}".strip()
    if not text:
        return RelevanceScore(0, ["empty"])

    score = 0
    reasons: list[str] = []
    for phrase, weight in POSITIVE_PHRASES:
        if phrase in text:
            score += weight
            reasons.append(f"+{weight}:{phrase}")
    for phrase, weight in NEGATIVE_PHRASES:
        if phrase in text:
            score -= weight
            reasons.append(f"-{weight}:{phrase}")

    # Explainers and listicles rarely lead with a company.
    if normalized_title.startswith(INTERROGATIVE_PREFIXES):
        score -= INTERROGATIVE_PENALTY
        reasons.append(f"-{INTERROGATIVE_PENALTY}:how/why/what")
    return RelevanceScore(score, reasons)


def is_likely_company_name(name: str | None) -> bool:
    trimmed = (name or "").strip()
    if not trimmed or len(trimmed) > MAX_NAME_LENGTH:
        return False
    if len(trimmed.split()) > MAX_NAME_WORDS:
        return False
    lowered = trimmed.lower()
    return not any(term in lowered for term in HARD_REJECT_TERMS)
