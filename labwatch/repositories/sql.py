"""SQLModel-backed repository for Postgres (production) and SQLite (tests)."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from labwatch.models.company import (
    Candidate,
    CompanyStatus,
    FundingRound,
    KnownCompany,
    Person,
    RefreshUpdate,
)
from labwatch.models.records import (
    CompanyRecord,
    CompanySourceRecord,
    FundingRoundRecord,
    PersonRecord,
    SourceRecord,
    company_columns,
)
from labwatch.models.source import Source
from labwatch.normalize import ensure_utc, latest, merge_aliases, normalize_name, normalize_url
from labwatch.repositories.base import RepositoryError, UpsertResult

logger = logging.getLogger(__name__)

_FILL_FIELDS = (
    "website_url",
    "description",
    "focus",
    "employee_count",
    "known_revenue",
    "hq_location",
    "founded_year",
    "canonical_domain",
)


class SqlRepository:
    """Persists the company directory through SQLModel sessions."""

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlRepository.")
        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        engine_kwargs: dict[str, Any] = {
            "echo": echo,
            "connect_args": connect_args,
            "pool_pre_ping": not drivername.startswith("sqlite"),
        }
        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._backend = "sqlite" if drivername.startswith("sqlite") else "postgres"

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def list_companies(self) -> list[KnownCompany]:
        with self._guard("list_companies"), self._session() as session:
            records = session.exec(select(CompanyRecord)).all()
            companies = [record.to_known_company() for record in records]
        return sorted(
            companies,
            key=lambda company: company.last_verified_at.timestamp()
            if company.last_verified_at
            else 0.0,
        )

    def upsert_source(self, source: Source) -> UpsertResult:
        url = normalize_url(source.url) or source.url
        with self._guard("upsert_source", url=url), self._session() as session:
            existing = session.exec(select(SourceRecord).where(SourceRecord.url == url)).first()
            if existing is not None:
                existing.title = existing.title or source.title
                existing.publisher = existing.publisher or source.publisher
                existing.published_at = existing.published_at or source.published_at
                session.add(existing)
                session.commit()
                return UpsertResult(id=str(existing.id), created=False)
            record = SourceRecord(
                url=url,
                title=source.title,
                publisher=source.publisher,
                published_at=source.published_at,
            )
            session.add(record)
            session.commit()
            return UpsertResult(id=str(record.id), created=True)

    def upsert_company(self, candidate: Candidate) -> UpsertResult:
        with self._guard("upsert_company", company=candidate.name), self._session() as session:
            existing = self._find_company(session, candidate)
            if existing is not None:
                for name in _FILL_FIELDS:
                    value = getattr(candidate, name)
                    if getattr(existing, name) is None and value is not None:
                        setattr(existing, name, value)
                existing.aliases = merge_aliases(existing.aliases or [], candidate.aliases)
                existing.last_verified_at = latest(
                    ensure_utc(existing.last_verified_at), candidate.last_verified_at
                )
                session.add(existing)
                session.commit()
                return UpsertResult(id=str(existing.id), created=False)
            record = CompanyRecord(
                **company_columns(candidate),
                status=(candidate.status or CompanyStatus.ACTIVE).value,
                aliases=list(candidate.aliases),
                last_verified_at=candidate.last_verified_at,
            )
            session.add(record)
            session.commit()
            logger.info(
                "repository.company.created",
                extra={"company": candidate.name, "backend": self._backend},
            )
            return UpsertResult(id=str(record.id), created=True)

    def link_company_source(self, company_id: str, source_id: str, kind: str) -> bool:
        company_uuid = _parse_id(company_id)
        source_uuid = _parse_id(source_id)
        with self._guard("link_company_source"), self._session() as session:
            existing = session.exec(
                select(CompanySourceRecord).where(
                    CompanySourceRecord.company_id == company_uuid,
                    CompanySourceRecord.source_id == source_uuid,
                    CompanySourceRecord.kind == kind,
                )
            ).first()
            if existing is None:
                session.add(
                    CompanySourceRecord(company_id=company_uuid, source_id=source_uuid, kind=kind)
                )
                session.commit()
        return True

    def upsert_people(
        self, company_id: str, people: Sequence[Person], source_ids: Mapping[str, str]
    ) -> int:
        company_uuid = _parse_id(company_id)
        upserted = 0
        with self._guard("upsert_people"), self._session() as session:
            rows = session.exec(
                select(PersonRecord).where(PersonRecord.company_id == company_uuid)
            ).all()
            by_key = {normalize_name(row.name): row for row in rows}
            for person in people:
                key = person.key
                if not key:
                    continue
                source_id = _lookup_source_id(person.source_url, source_ids)
                row = by_key.get(key)
                if row is not None:
                    row.role = row.role or person.role
                    row.is_founder = row.is_founder or person.is_founder
                    row.profile_url = row.profile_url or person.profile_url
                    row.primary_source_id = row.primary_source_id or source_id
                else:
                    row = PersonRecord(
                        company_id=company_uuid,
                        name=person.name,
                        role=person.role,
                        is_founder=person.is_founder,
                        profile_url=person.profile_url,
                        primary_source_id=source_id,
                    )
                    by_key[key] = row
                session.add(row)
                upserted += 1
            session.commit()
        return upserted

    def upsert_funding_rounds(
        self, company_id: str, rounds: Sequence[FundingRound], source_ids: Mapping[str, str]
    ) -> int:
        company_uuid = _parse_id(company_id)
        upserted = 0
        with self._guard("upsert_funding_rounds"), self._session() as session:
            rows = list(
                session.exec(
                    select(FundingRoundRecord).where(FundingRoundRecord.company_id == company_uuid)
                ).all()
            )
            for funding_round in rounds:
                if funding_round.is_empty:
                    continue
                source_id = _lookup_source_id(funding_round.source_url, source_ids)
                row = next(
                    (row for row in rows if row.to_funding_round().matches(funding_round)), None
                )
                if row is not None:
                    if row.amount_usd is None:
                        row.amount_usd = funding_round.amount_usd
                    if row.valuation_usd is None:
                        row.valuation_usd = funding_round.valuation_usd
                    if not row.investors and funding_round.investors:
                        row.investors = list(funding_round.investors)
                    row.source_id = row.source_id or source_id
                else:
                    row = FundingRoundRecord(
                        company_id=company_uuid,
                        round_type=funding_round.round_type,
                        amount_usd=funding_round.amount_usd,
                        valuation_usd=funding_round.valuation_usd,
                        announced_at=funding_round.announced_at,
                        investors=list(funding_round.investors),
                        source_id=source_id,
                    )
                    rows.append(row)
                session.add(row)
                upserted += 1
            session.commit()
        return upserted

    def update_company_from_refresh(self, company_id: str, update: RefreshUpdate) -> None:
        company_uuid = _parse_id(company_id)
        with (
            self._guard("update_company_from_refresh", company_id=company_id),
            self._session() as session,
        ):
            record = session.get(CompanyRecord, company_uuid)
            if record is None:
                raise RepositoryError(
                    f"Company {company_id} does not exist.", code="COMPANY_NOT_FOUND"
                )
            for name, value in update.changes().items():
                if isinstance(value, CompanyStatus):
                    value = value.value
                setattr(record, name, value)
            session.add(record)
            session.commit()

    def _find_company(self, session: Session, candidate: Candidate) -> CompanyRecord | None:
        if candidate.canonical_domain:
            record = session.exec(
                select(CompanyRecord).where(
                    CompanyRecord.canonical_domain == candidate.canonical_domain
                )
            ).first()
            if record is not None:
                return record
        key = normalize_name(candidate.name)
        if not key:
            return None
        # JSON containment is dialect-specific; alias matching happens client-side.
        for record in session.exec(select(CompanyRecord)).all():
            if key in (record.aliases or []):
                return record
        return None

    @contextmanager
    def _guard(self, operation: str, **fields: Any) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception(
                "repository.error",
                extra={"operation": operation, "backend": self._backend, **fields},
            )
            raise RepositoryError(f"{operation} failed.", code="DATABASE_ERROR") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine, expire_on_commit=False) as session:
            yield session


def _parse_id(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise RepositoryError(f"Invalid record id: {value!r}", code="INVALID_ID") from exc


def _lookup_source_id(url: str | None, source_ids: Mapping[str, str]) -> UUID | None:
    if not url:
        return None
    source_id = source_ids.get(normalize_url(url) or url)
    return _parse_id(source_id) if source_id else None


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Map async/psycopg3 driver names onto psycopg2 and set SQLite thread options."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    elif drivername == "postgres":
        drivername = "postgresql+psycopg2"
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    if "ssl" in query:
        query.pop("ssl")
        query.setdefault("sslmode", "require")
        sync_url = sync_url.set(query=query)
    if drivername.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return sync_url.render_as_string(hide_password=False), connect_args, drivername

