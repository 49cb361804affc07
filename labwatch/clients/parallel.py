"""Client for the Parallel deep-research task-group API."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from labwatch.models.company import KnownCompany
from labwatch.models.research import ResearchTaskResult
from tools.backoff import SleepFn, call_with_retry

logger = logging.getLogger(__name__)


class ResearchProviderError(RuntimeError):
    """Base error for deep-research provider failures."""

    def __init__(self, message: str, code: str = "RESEARCH_PROVIDER_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ResearchProviderTransientError(ResearchProviderError):
    """Timeouts, rate limits and 5xx responses; retried once."""


class ResearchProviderSchemaError(ResearchProviderError):
    """Raised when a provider response is missing required identifiers."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="RESEARCH_SCHEMA_ERR")


_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_INTEGER = {"type": ["integer", "null"]}

INPUT_SCHEMA: dict[str, Any] = {
    "type": "json",
    "json_schema": {
        "type": "object",
        "properties": {
            "company_id": {"type": "string"},
            "company_name": {"type": "string"},
            "company_website": _NULLABLE_STRING,
        },
        "required": ["company_id", "company_name"],
        "additionalProperties": False,
    },
}

_SOURCE_ITEM = {
    "type": "object",
    "properties": {
        "url": _NULLABLE_STRING,
        "title": _NULLABLE_STRING,
        "publisher": _NULLABLE_STRING,
        "published_at": _NULLABLE_STRING,
    },
    "required": ["url", "title", "publisher", "published_at"],
    "additionalProperties": False,
}

_FUNDING_ROUND_ITEM = {
    "type": "object",
    "properties": {
        "round_type": _NULLABLE_STRING,
        "amount_usd": _NULLABLE_INTEGER,
        "valuation_usd": {
            "type": ["integer", "null"],
            "description": "Post-money valuation in USD if publicly reported; otherwise null.",
        },
        "announced_at": {"type": ["string", "null"], "description": "YYYY-MM-DD if known."},
        "investors": {"type": ["array", "null"], "items": {"type": "string"}},
        "source_url": _NULLABLE_STRING,
    },
    "required": [
        "round_type",
        "amount_usd",
        "valuation_usd",
        "announced_at",
        "investors",
        "source_url",
    ],
    "additionalProperties": False,
}

OUTPUT_PROPERTIES: dict[str, Any] = {
    "company_id": {"type": ["string", "null"], "description": "Echo the company_id from input."},
    "company_name": _NULLABLE_STRING,
    "website_url": {
        "type": ["string", "null"],
        "description": "Official website URL if confidently identified.",
    },
    "canonical_domain": {
        "type": ["string", "null"],
        "description": "Canonical domain for the official website.",
    },
    "description": _NULLABLE_STRING,
    "focus": {
        "type": ["string", "null"],
        "description": "One concise sentence describing the company's focus. "
        "No funding, valuation, or revenue details.",
    },
    "employee_count": _NULLABLE_INTEGER,
    "known_revenue": _NULLABLE_STRING,
    "valuation_usd": {
        "type": ["integer", "null"],
        "description": "Most recent publicly reported valuation in USD, only when cited.",
    },
    "valuation_as_of": {"type": ["string", "null"], "description": "YYYY-MM-DD if known."},
    "valuation_source_url": _NULLABLE_STRING,
    "status": {
        "type": ["string", "null"],
        "description": "One of: active | stealth | inactive | unknown.",
    },
    "founded_year": _NULLABLE_INTEGER,
    "hq_location": _NULLABLE_STRING,
    "sources": {"type": ["array", "null"], "items": _SOURCE_ITEM},
    "funding_rounds": {
        "type": ["array", "null"],
        "description": "Up to 5 notable funding rounds, one entry per round.",
        "items": _FUNDING_ROUND_ITEM,
    },
}

OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "json",
    "json_schema": {
        "type": "object",
        "properties": OUTPUT_PROPERTIES,
        "required": list(OUTPUT_PROPERTIES),
        "additionalProperties": False,
    },
}


@dataclass(frozen=True)
class TaskGroupStatus:
    is_active: bool
    status_counts: dict[str, int]


@dataclass(frozen=True)
class RunResult:
    run_id: str
    status: str | None
    result: ResearchTaskResult | None

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class ParallelClient:
    """Task-group submission, status polling and per-run result retrieval."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.parallel.ai",
        processor: str = "core",
        timeout: float = 60.0,
        http_client: httpx.Client | None = None,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        sleep: SleepFn | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("PARALLEL_API_KEY is required to create a ParallelClient.")
        self._api_key = api_key
        self._processor = processor
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_http_client:
            self._http.close()

    def create_task_group(self) -> str:
        data = self._request("POST", "/v1beta/tasks/groups", label="create task group", json={})
        group_id = data.get("taskgroup_id")
        if not isinstance(group_id, str) or not group_id:
            raise ResearchProviderSchemaError("Parallel did not return taskgroup_id.")
        return group_id

    def add_runs(self, group_id: str, companies: Sequence[KnownCompany]) -> list[str]:
        inputs = [
            {
                "processor": self._processor,
                "input": {
                    "company_id": company.id,
                    "company_name": company.name,
                    "company_website": company.website_url,
                },
            }
            for company in companies
        ]
        data = self._request(
            "POST",
            f"/v1beta/tasks/groups/{group_id}/runs",
            label="add task runs",
            json={
                "default_task_spec": {
                    "input_schema": INPUT_SCHEMA,
                    "output_schema": OUTPUT_SCHEMA,
                },
                "inputs": inputs,
            },
        )
        run_ids = data.get("run_ids")
        if not isinstance(run_ids, list):
            raise ResearchProviderSchemaError("Parallel did not return run_ids.")
        run_ids = [run_id for run_id in run_ids if isinstance(run_id, str) and run_id]
        if len(run_ids) != len(inputs):
            logger.warning(
                "research.runs.count_mismatch",
                extra={"expected": len(inputs), "received": len(run_ids), "group_id": group_id},
            )
        return run_ids

    def get_group_status(self, group_id: str) -> TaskGroupStatus:
        data = self._request("GET", f"/v1beta/tasks/groups/{group_id}", label="fetch task group")
        status = data.get("status") if isinstance(data.get("status"), dict) else {}
        counts = status.get("task_run_status_counts")
        return TaskGroupStatus(
            is_active=bool(status.get("is_active", False)),
            status_counts=dict(counts) if isinstance(counts, dict) else {},
        )

    def get_run_result(self, run_id: str) -> RunResult:
        data = self._request(
            "GET",
            f"/v1/tasks/runs/{run_id}/result",
            label="fetch run result",
            params={"timeout": 30},
        )
        run = data.get("run") if isinstance(data.get("run"), dict) else {}
        status = run.get("status") if isinstance(run.get("status"), str) else None
        result = ResearchTaskResult.from_output(data.get("output")) if status == "completed" else None
        return RunResult(run_id=run_id, status=status, result=result)

    def _request(
        self,
        method: str,
        path: str,
        *,
        label: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        def _invoke() -> dict[str, Any]:
            headers = {"x-api-key": self._api_key, "Content-Type": "application/json"}
            try:
                response = self._http.request(method, path, json=json, params=params, headers=headers)
            except httpx.TimeoutException as exc:
                raise ResearchProviderTransientError(
                    f"{label} timed out", code="RESEARCH_TIMEOUT"
                ) from exc
            except httpx.HTTPError as exc:
                raise ResearchProviderTransientError(
                    f"{label} failed: {exc}", code="RESEARCH_HTTP_ERROR"
                ) from exc

            if response.status_code == 429 or response.status_code >= 500 or response.status_code == 408:
                raise ResearchProviderTransientError(
                    f"{label} failed ({response.status_code})",
                    code=f"RESEARCH_{response.status_code}",
                )
            if response.status_code >= 400:
                raise ResearchProviderError(
                    f"{label} failed ({response.status_code})",
                    code=f"RESEARCH_{response.status_code}",
                )
            try:
                data = response.json()
            except ValueError as exc:
                raise ResearchProviderSchemaError(f"{label} returned invalid JSON.") from exc
            if not isinstance(data, dict):
                raise ResearchProviderSchemaError(f"{label} returned a non-object payload.")
            return data

        return call_with_retry(
            _invoke,
            retry_on=(ResearchProviderTransientError,),
            label=f"parallel.{label.replace(' ', '_')}",
            max_attempts=self._max_attempts,
            delay=self._retry_delay,
            sleep=self._sleep,
        )

    def __enter__(self) -> ParallelClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
