"""SQLModel mappings for the company directory tables."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, Column, Date, DateTime, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from labwatch.models.company import CompanyStatus, FundingRound, KnownCompany
from labwatch.normalize import ensure_utc


def _utcnow() -> datetime:
    return datetime.now(UTC)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(element, compiler, **kwargs) -> str:  # pragma: no cover - sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - sql generator
    return "timezone('utc', now())"


def _created_at_column() -> Column:
    return Column(DateTime(timezone=True), nullable=False, server_default=UtcNow())


def _updated_at_column() -> Column:
    return Column(
        DateTime(timezone=True), nullable=False, server_default=UtcNow(), onupdate=UtcNow()
    )


class CompanyRecord(SQLModel, table=True):
    __tablename__ = "companies"
    __table_args__ = (
        sa.Index("ix_companies_canonical_domain", "canonical_domain"),
        sa.Index("ix_companies_last_verified_at", "last_verified_at"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    canonical_domain: str | None = Field(default=None, sa_column=Column(String(length=255)))
    website_url: str | None = Field(default=None, sa_column=Column(Text))
    description: str | None = Field(default=None, sa_column=Column(Text))
    focus: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(
        default=CompanyStatus.ACTIVE.value,
        sa_column=Column(String(length=32), nullable=False),
    )
    employee_count: int | None = Field(default=None, sa_column=Column(Integer))
    known_revenue: str | None = Field(default=None, sa_column=Column(String(length=255)))
    hq_location: str | None = Field(default=None, sa_column=Column(String(length=255)))
    founded_year: int | None = Field(default=None, sa_column=Column(Integer))
    aliases: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    last_verified_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_created_at_column())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_updated_at_column())

    def to_known_company(self) -> KnownCompany:
        try:
            status = CompanyStatus(self.status)
        except ValueError:
            status = CompanyStatus.UNKNOWN
        return KnownCompany(
            id=str(self.id),
            name=self.name,
            canonical_domain=self.canonical_domain,
            website_url=self.website_url,
            description=self.description,
            focus=self.focus,
            status=status,
            employee_count=self.employee_count,
            known_revenue=self.known_revenue,
            hq_location=self.hq_location,
            founded_year=self.founded_year,
            aliases=list(self.aliases or []),
            last_verified_at=ensure_utc(self.last_verified_at),
        )


class SourceRecord(SQLModel, table=True):
    __tablename__ = "sources"
    __table_args__ = (sa.UniqueConstraint("url", name="uq_sources_url"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    url: str = Field(sa_column=Column(Text, nullable=False))
    title: str | None = Field(default=None, sa_column=Column(Text))
    publisher: str | None = Field(default=None, sa_column=Column(String(length=255)))
    published_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_created_at_column())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_updated_at_column())


class CompanySourceRecord(SQLModel, table=True):
    __tablename__ = "company_sources"
    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "source_id", "kind", name="uq_company_sources_company_source_kind"
        ),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False)
    )
    source_id: UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("sources.id"), nullable=False)
    )
    kind: str = Field(sa_column=Column(String(length=64), nullable=False))


class PersonRecord(SQLModel, table=True):
    __tablename__ = "people"
    __table_args__ = (sa.Index("ix_people_company_id", "company_id"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False)
    )
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    role: str | None = Field(default=None, sa_column=Column(String(length=255)))
    is_founder: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    profile_url: str | None = Field(default=None, sa_column=Column(Text))
    primary_source_id: UUID | None = Field(
        default=None, sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("sources.id"))
    )


class FundingRoundRecord(SQLModel, table=True):
    __tablename__ = "funding_rounds"
    __table_args__ = (sa.Index("ix_funding_rounds_company_id", "company_id"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_id: UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("companies.id"), nullable=False)
    )
    round_type: str | None = Field(default=None, sa_column=Column(String(length=64)))
    amount_usd: int | None = Field(default=None, sa_column=Column(BigInteger))
    valuation_usd: int | None = Field(default=None, sa_column=Column(BigInteger))
    announced_at: date | None = Field(default=None, sa_column=Column(Date))
    investors: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    source_id: UUID | None = Field(
        default=None, sa_column=Column(Uuid(as_uuid=True), sa.ForeignKey("sources.id"))
    )

    def to_funding_round(self) -> FundingRound:
        return FundingRound(
            round_type=self.round_type,
            amount_usd=self.amount_usd,
            valuation_usd=self.valuation_usd,
            announced_at=self.announced_at,
            investors=list(self.investors or []),
        )


def company_columns(company: Any) -> dict[str, Any]:
    """Column values shared by Candidate and KnownCompany payloads."""
    return {
        "name": company.name,
        "canonical_domain": company.canonical_domain,
        "website_url": company.website_url,
        "description": company.description,
        "focus": company.focus,
        "employee_count": company.employee_count,
        "known_revenue": company.known_revenue,
        "hq_location": company.hq_location,
        "founded_year": company.founded_year,
    }
