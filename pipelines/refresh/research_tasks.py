"""Long-poll driver for deep-research task groups.

A batch moves through SUBMITTED -> POLLING -> COMPLETED, or ends in TIMED_OUT
when the group is still active after the last poll or once the optional
wall-clock budget is spent, or FAILED when the provider rejects the
submission or a status poll. Run results are fetched one at a time; a
company without a completed result maps to None.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from labwatch.clients.parallel import ResearchProviderError, RunResult, TaskGroupStatus
from labwatch.models.company import KnownCompany
from labwatch.models.research import ResearchTaskResult
from tools.backoff import SleepFn

logger = logging.getLogger("pipelines.refresh.research_tasks")

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 240


class ResearchTaskError(RuntimeError):
    """Raised when a batch is driven from an inconsistent state."""

    def __init__(self, message: str, code: str = "RESEARCH_TASK_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ResearchProvider(Protocol):
    def create_task_group(self) -> str:
        ...

    def add_runs(self, group_id: str, companies: Sequence[KnownCompany]) -> list[str]:
        ...

    def get_group_status(self, group_id: str) -> TaskGroupStatus:
        ...

    def get_run_result(self, run_id: str) -> RunResult:
        ...


class BatchState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


_TRANSITIONS: dict[BatchState, frozenset[BatchState]] = {
    BatchState.SUBMITTED: frozenset({BatchState.POLLING, BatchState.FAILED}),
    BatchState.POLLING: frozenset(
        {BatchState.POLLING, BatchState.COMPLETED, BatchState.TIMED_OUT, BatchState.FAILED}
    ),
    BatchState.COMPLETED: frozenset(),
    BatchState.TIMED_OUT: frozenset(),
    BatchState.FAILED: frozenset(),
}


@dataclass
class ResearchBatch:
    """Progress and outcome of one task-group submission."""

    companies: list[KnownCompany]
    state: BatchState = BatchState.SUBMITTED
    group_id: str | None = None
    run_ids: list[str] = field(default_factory=list)
    poll_attempts: int = 0
    elapsed_seconds: float = 0.0
    results: dict[str, ResearchTaskResult | None] = field(default_factory=dict)
    error: str | None = None

    def transition(self, state: BatchState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ResearchTaskError(
                f"Invalid batch transition {self.state.value} -> {state.value}",
                code="RESEARCH_INVALID_TRANSITION",
            )
        logger.debug(
            "research.batch.transition",
            extra={"from_state": self.state.value, "to_state": state.value, "group_id": self.group_id},
        )
        self.state = state

    @property
    def missing(self) -> int:
        return sum(1 for result in self.results.values() if result is None)


class ResearchTaskRunner:
    def __init__(
        self,
        client: ResearchProvider,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        max_wait_seconds: float | None = None,
        sleep: SleepFn | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be >= 1")
        if max_wait_seconds is not None and max_wait_seconds <= 0:
            raise ValueError("max_wait_seconds must be positive")
        self._client = client
        self._poll_interval = max(poll_interval, 0.0)
        self._max_poll_attempts = max_poll_attempts
        self._max_wait_seconds = max_wait_seconds
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic

    def run(self, companies: Sequence[KnownCompany]) -> ResearchBatch:
        batch = ResearchBatch(companies=list(companies))
        if not batch.companies:
            batch.transition(BatchState.POLLING)
            batch.transition(BatchState.COMPLETED)
            return batch

        try:
            batch.group_id = self._client.create_task_group()
            batch.run_ids = self._client.add_runs(batch.group_id, batch.companies)
        except ResearchProviderError as exc:
            logger.error(
                "research.batch.submit_failed",
                extra={"code": exc.code, "error": str(exc), "companies": len(batch.companies)},
            )
            batch.error = str(exc)
            batch.transition(BatchState.FAILED)
            batch.results = {company.id: None for company in batch.companies}
            return batch

        batch.transition(BatchState.POLLING)
        self._poll(batch)
        if batch.state is not BatchState.FAILED:
            self._collect(batch)
        else:
            batch.results = {company.id: None for company in batch.companies}
        logger.info(
            "research.batch.finished",
            extra={
                "group_id": batch.group_id,
                "state": batch.state.value,
                "poll_attempts": batch.poll_attempts,
                "companies": len(batch.companies),
                "missing": batch.missing,
            },
        )
        return batch

    def _poll(self, batch: ResearchBatch) -> None:
        if batch.group_id is None:
            raise ResearchTaskError("Cannot poll a batch without a task group.", code="RESEARCH_GROUP_MISSING")
        started = self._clock()
        while batch.poll_attempts < self._max_poll_attempts:
            batch.elapsed_seconds = self._clock() - started
            if self._max_wait_seconds is not None and batch.elapsed_seconds >= self._max_wait_seconds:
                break
            batch.poll_attempts += 1
            try:
                status = self._client.get_group_status(batch.group_id)
            except ResearchProviderError as exc:
                logger.error(
                    "research.batch.poll_failed",
                    extra={"group_id": batch.group_id, "code": exc.code, "error": str(exc)},
                )
                batch.error = str(exc)
                batch.transition(BatchState.FAILED)
                return
            if not status.is_active:
                batch.transition(BatchState.COMPLETED)
                return
            if batch.poll_attempts < self._max_poll_attempts:
                self._sleep(self._poll_interval)
        batch.elapsed_seconds = self._clock() - started
        logger.warning(
            "research.batch.timed_out",
            extra={
                "group_id": batch.group_id,
                "poll_attempts": batch.poll_attempts,
                "elapsed_seconds": round(batch.elapsed_seconds, 3),
            },
        )
        batch.transition(BatchState.TIMED_OUT)

    def _collect(self, batch: ResearchBatch) -> None:
        known_ids = {company.id for company in batch.companies}
        index_fallback = len(batch.run_ids) == len(batch.companies)
        results: dict[str, ResearchTaskResult | None] = {}
        for position, run_id in enumerate(batch.run_ids):
            try:
                run = self._client.get_run_result(run_id)
            except ResearchProviderError as exc:
                logger.warning(
                    "research.run.result_failed",
                    extra={"run_id": run_id, "code": exc.code, "error": str(exc)},
                )
                continue
            if not run.completed or run.result is None:
                continue
            company_id = run.result.content.company_id
            if company_id not in known_ids:
                company_id = batch.companies[position].id if index_fallback else None
            if company_id is None:
                logger.warning("research.run.unmatched", extra={"run_id": run_id})
                continue
            results[company_id] = run.result
        batch.results = {company.id: results.get(company.id) for company in batch.companies}
