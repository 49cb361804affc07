"""Resolve the company a document refers to: heuristics first, LLM on demand."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from labwatch.clients.llm import ChatJSONClient, LLMError
from labwatch.config import ResolutionMode
from labwatch.normalize import normalize_whitespace
from pipelines.ingest.extract import extract_company_name, name_from_domain
from pipelines.ingest.relevance import is_likely_company_name

logger = logging.getLogger("pipelines.ingest.entity_resolution")

MAX_FIELD_LENGTH = 600

CLEAN_PREFIXES = (
    "exclusive:",
    "exclusive",
    "ai startup",
    "startup",
    "new startup",
    "ai lab",
    "research lab",
)
SUSPICIOUS_PHRASES = ("ai startup", "startup", "exclusive", "funding", "raises", "raised", "series", "seed")

SYSTEM_PROMPT = (
    "You extract the single most likely company name from the given evidence. "
    'Return JSON: {"company_name": string|null}.'
)
LLM_RULES = (
    "Return null if no specific company is mentioned.",
    "Remove generic descriptors like 'AI startup', 'startup', or 'company'.",
    "Preserve brand words like 'Labs' if they are part of the name.",
    "Return only the company name, not investors or people.",
)

_WARNED_MISSING_KEY = False


@dataclass(frozen=True)
class ResolutionDocument:
    """Evidence about one document handed to the resolver."""

    url: str
    title: str | None = None
    snippet: str | None = None
    meta_description: str | None = None
    json_ld_names: Sequence[str] = ()
    fallback_names: Sequence[str] = ()


@dataclass(frozen=True)
class Resolution:
    names: list[str]
    mode: str
    candidates: list[str] = field(default_factory=list)
    used_llm: bool = False


def clean_prefixes(value: str) -> str:
    trimmed = normalize_whitespace(value)
    lowered = trimmed.lower()
    for prefix in CLEAN_PREFIXES:
        if lowered.startswith(f"{prefix} "):
            return trimmed[len(prefix):].strip()
    return trimmed


def build_heuristic_candidates(doc: ResolutionDocument) -> list[str]:
    """Structured-metadata names, then the title pattern, then caller fallbacks.

    The document's own domain is used only when none of those yield a name.
    """
    candidates: dict[str, None] = {}

    def add(value: str | None) -> None:
        if not value:
            return
        cleaned = clean_prefixes(value)
        if cleaned:
            candidates.setdefault(cleaned, None)

    for name in doc.json_ld_names:
        add(name)
    if doc.title:
        add(extract_company_name(doc.title))
    for name in doc.fallback_names:
        add(name)
    if not candidates:
        add(name_from_domain(doc.url))
    return list(candidates)


def is_suspicious(candidate: str) -> bool:
    cleaned = clean_prefixes(candidate)
    if not is_likely_company_name(cleaned):
        return True
    lowered = cleaned.lower()
    return any(phrase in lowered for phrase in SUSPICIOUS_PHRASES)


def _truncate(value: str | None) -> str | None:
    if not value:
        return None
    return value[:MAX_FIELD_LENGTH]


def build_llm_payload(doc: ResolutionDocument, candidates: Sequence[str]) -> dict[str, Any]:
    return {
        "url": doc.url,
        "title": _truncate(doc.title),
        "snippet": _truncate(doc.snippet),
        "meta_description": _truncate(doc.meta_description),
        "json_ld_names": list(doc.json_ld_names),
        "candidate_hints": list(candidates),
        "rules": list(LLM_RULES),
    }


def _warn_missing_key() -> None:
    global _WARNED_MISSING_KEY  # noqa: PLW0603
    if _WARNED_MISSING_KEY:
        return
    _WARNED_MISSING_KEY = True
    logger.warning(
        "resolver.llm.disabled",
        extra={"reason": "MISTRAL_API_KEY not set; falling back to heuristic resolution"},
    )


def reset_missing_key_warning() -> None:  # pragma: no cover - test helper
    global _WARNED_MISSING_KEY  # noqa: PLW0603
    _WARNED_MISSING_KEY = False


class EntityResolver:
    """Layered name resolution with an optional LLM arbiter."""

    def __init__(self, mode: ResolutionMode = ResolutionMode.OFF, llm: ChatJSONClient | None = None) -> None:
        self._mode = mode
        self._llm = llm

    @property
    def mode(self) -> ResolutionMode:
        return self._mode

    def resolve(self, doc: ResolutionDocument) -> Resolution:
        candidates = build_heuristic_candidates(doc)
        heuristic_names = [name for name in candidates if is_likely_company_name(name)]

        if self._mode is ResolutionMode.OFF:
            return Resolution(names=heuristic_names, mode="heuristic", candidates=candidates)

        label = self._mode.value
        should_call = self._mode is ResolutionMode.LLM or (
            not candidates or any(is_suspicious(candidate) for candidate in candidates)
        )
        if not should_call:
            return Resolution(names=heuristic_names, mode=label, candidates=candidates)

        llm_name = self._ask_llm(doc, candidates)
        if llm_name and is_likely_company_name(llm_name):
            return Resolution(names=[llm_name], mode=label, candidates=candidates, used_llm=True)
        return Resolution(names=heuristic_names, mode=label, candidates=candidates)

    def _ask_llm(self, doc: ResolutionDocument, candidates: Sequence[str]) -> str | None:
        if self._llm is None:
            _warn_missing_key()
            return None
        try:
            payload = self._llm.complete_json(
                system_prompt=SYSTEM_PROMPT, user_payload=build_llm_payload(doc, candidates)
            )
        except LLMError as exc:
            logger.warning(
                "resolver.llm.failed",
                extra={"url": doc.url, "code": exc.code, "error": str(exc)},
            )
            return None
        raw = payload.get("company_name") if payload else None
        if not isinstance(raw, str):
            return None
        cleaned = clean_prefixes(raw)
        return cleaned or None
