"""Typed views of deep-research task output.

Provider payloads are loosely shaped JSON. Every field is optional and values
of the wrong type are coerced to None (or dropped from lists) so malformed
entries never reach the Candidate/KnownCompany models.
"""

from __future__ import annotations

import json
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.replace(",", "").strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _as_dicts(value: Any) -> list[dict[str, Any]] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, dict)]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ResearchSource(_Lenient):
    url: str | None = None
    title: str | None = None
    publisher: str | None = None
    published_at: str | None = None

    @field_validator("url", "title", "publisher", "published_at", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> str | None:
        return _as_str(value)


class ResearchFundingRound(_Lenient):
    round_type: str | None = None
    amount_usd: float | None = None
    valuation_usd: float | None = None
    announced_at: str | None = None
    investors: list[str] | None = None
    source_url: str | None = None

    @field_validator("round_type", "announced_at", "source_url", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> str | None:
        return _as_str(value)

    @field_validator("amount_usd", "valuation_usd", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> float | None:
        return _as_number(value)

    @field_validator("investors", mode="before")
    @classmethod
    def _investors(cls, value: Any) -> list[str] | None:
        if not isinstance(value, list):
            return None
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class ResearchCitation(_Lenient):
    url: str | None = None
    title: str | None = None
    excerpt: str | None = None
    quote: str | None = None
    snippet: str | None = None
    text: str | None = None

    @field_validator("url", "title", "excerpt", "quote", "snippet", "text", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> str | None:
        return _as_str(value)

    @property
    def body(self) -> str | None:
        return self.excerpt or self.quote or self.snippet or self.text


class ResearchFieldBasis(_Lenient):
    field: str | None = None
    citations: list[ResearchCitation] = []
    reasoning: str | None = None
    confidence: str | None = None

    @field_validator("field", "reasoning", "confidence", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> str | None:
        return _as_str(value)

    @field_validator("citations", mode="before")
    @classmethod
    def _citations(cls, value: Any) -> list[dict[str, Any]]:
        return _as_dicts(value) or []

    @property
    def is_corroborated(self) -> bool:
        return any(citation.url for citation in self.citations)


class ResearchCompanyOutput(_Lenient):
    company_id: str | None = None
    company_name: str | None = None
    website_url: str | None = None
    canonical_domain: str | None = None
    description: str | None = None
    focus: str | None = None
    employee_count: float | None = None
    known_revenue: str | None = None
    status: str | None = None
    hq_location: str | None = None
    founded_year: float | None = None
    valuation_usd: float | None = None
    valuation_as_of: str | None = None
    valuation_source_url: str | None = None
    sources: list[ResearchSource] = []
    funding_rounds: list[ResearchFundingRound] = []

    @field_validator(
        "company_id",
        "company_name",
        "website_url",
        "canonical_domain",
        "description",
        "focus",
        "known_revenue",
        "status",
        "hq_location",
        "valuation_as_of",
        "valuation_source_url",
        mode="before",
    )
    @classmethod
    def _strings(cls, value: Any) -> str | None:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return _as_str(value)

    @field_validator("employee_count", "founded_year", "valuation_usd", mode="before")
    @classmethod
    def _numbers(cls, value: Any) -> float | None:
        return _as_number(value)

    @field_validator("sources", "funding_rounds", mode="before")
    @classmethod
    def _entries(cls, value: Any) -> list[dict[str, Any]]:
        return _as_dicts(value) or []


class ResearchTaskResult(_Lenient):
    """Content plus optional per-field citation basis for one company run."""

    content: ResearchCompanyOutput
    basis: list[ResearchFieldBasis] = []

    @field_validator("basis", mode="before")
    @classmethod
    def _basis(cls, value: Any) -> list[dict[str, Any]]:
        return _as_dicts(value) or []

    def basis_for(self, *fields: str) -> ResearchFieldBasis | None:
        wanted = {field.lower() for field in fields}
        for entry in self.basis:
            if entry.field and entry.field.lower() in wanted:
                return entry
        return None

    @classmethod
    def from_output(cls, output: Any) -> ResearchTaskResult | None:
        """Validate a provider `output` object (`{"content": ..., "basis": [...]}`)."""
        if not isinstance(output, dict):
            return None
        content = output.get("content")
        if isinstance(content, str):
            try:
                content = json.loads(content)
            except ValueError:
                return None
        if not isinstance(content, dict):
            return None
        try:
            return cls.model_validate({"content": content, "basis": output.get("basis")})
        except ValidationError:
            return None
