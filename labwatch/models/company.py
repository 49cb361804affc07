"""Company-level domain models: candidates, known companies, people and rounds."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from labwatch.models.source import Source, dedupe_sources
from labwatch.normalize import ensure_utc, merge_aliases, normalize_name


class CompanyStatus(str, Enum):
    ACTIVE = "active"
    STEALTH = "stealth"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class Person(BaseModel):
    """A founder or team member tied to a company."""

    name: str = Field(..., min_length=1)
    role: str | None = None
    is_founder: bool = False
    profile_url: str | None = None
    source_url: str | None = None

    @property
    def key(self) -> str:
        return normalize_name(self.name)


class FundingRound(BaseModel):
    """A funding event; monetary values are whole USD."""

    round_type: str | None = None
    amount_usd: int | None = Field(default=None, ge=0)
    valuation_usd: int | None = Field(default=None, ge=0)
    announced_at: date | None = None
    investors: list[str] = Field(default_factory=list)
    source_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.round_type is None and self.amount_usd is None and self.valuation_usd is None

    def identity_key(self) -> tuple[object, ...]:
        """(type, date) when the announcement date is known, else (type, amount, valuation)."""
        round_type = (self.round_type or "").lower()
        if self.announced_at is not None:
            return ("dated", round_type, self.announced_at.isoformat())
        return ("undated", round_type, self.amount_usd, self.valuation_usd)

    def matches(self, other: FundingRound) -> bool:
        """Whether `other` describes the same round as this stored one."""
        if (self.round_type or "").lower() != (other.round_type or "").lower():
            return False
        if self.announced_at is not None and other.announced_at is not None:
            return self.announced_at == other.announced_at
        return self.amount_usd == other.amount_usd and self.valuation_usd == other.valuation_usd


class Candidate(BaseModel):
    """A prospective company inferred from one or more Sources during a run."""

    name: str = Field(..., min_length=1)
    canonical_domain: str | None = None
    website_url: str | None = None
    description: str | None = None
    focus: str | None = None
    status: CompanyStatus | None = None
    employee_count: int | None = None
    known_revenue: str | None = None
    hq_location: str | None = None
    founded_year: int | None = None
    aliases: list[str] = Field(default_factory=list)
    last_verified_at: datetime | None = None
    sources: list[Source] = Field(default_factory=list)
    people: list[Person] = Field(default_factory=list)
    funding_rounds: list[FundingRound] = Field(default_factory=list)

    @field_validator("last_verified_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _enforce_invariants(self) -> Candidate:
        self.aliases = merge_aliases([], [*self.aliases, self.name])
        self.sources = dedupe_sources(self.sources)
        return self

    @property
    def key(self) -> str:
        """Merge key: normalized name, or the lower-cased display name when that is empty."""
        return normalize_name(self.name) or self.name.strip().lower()


class KnownCompany(BaseModel):
    """A persisted company record."""

    id: str
    name: str
    canonical_domain: str | None = None
    website_url: str | None = None
    description: str | None = None
    focus: str | None = None
    status: CompanyStatus = CompanyStatus.UNKNOWN
    employee_count: int | None = None
    known_revenue: str | None = None
    hq_location: str | None = None
    founded_year: int | None = None
    aliases: list[str] = Field(default_factory=list)
    last_verified_at: datetime | None = None

    @field_validator("last_verified_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class RefreshUpdate(BaseModel):
    """Field changes produced by reconciling a research result; None means unchanged."""

    website_url: str | None = None
    canonical_domain: str | None = None
    employee_count: int | None = None
    known_revenue: str | None = None
    status: CompanyStatus | None = None
    description: str | None = None
    focus: str | None = None
    hq_location: str | None = None
    founded_year: int | None = None
    last_verified_at: datetime

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)
