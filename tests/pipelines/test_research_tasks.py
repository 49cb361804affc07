import pytest

from labwatch.clients.parallel import ResearchProviderError, RunResult, TaskGroupStatus
from labwatch.models.company import KnownCompany
from labwatch.models.research import ResearchTaskResult
from pipelines.refresh.research_tasks import BatchState, ResearchBatch, ResearchTaskError, ResearchTaskRunner

COMPANIES = [
    KnownCompany(id="c1", name="Periodic Labs"),
    KnownCompany(id="c2", name="World Labs"),
]


def _result(company_id: str | None, **content) -> ResearchTaskResult:
    result = ResearchTaskResult.from_output({"content": {"company_id": company_id, **content}})
    assert result is not None
    return result


class StubProvider:
    def __init__(
        self,
        *,
        active_polls: int = 0,
        results: dict[str, RunResult] | None = None,
        submit_error: Exception | None = None,
        poll_error: Exception | None = None,
    ) -> None:
        self.active_polls = active_polls
        self.results = results or {}
        self.submit_error = submit_error
        self.poll_error = poll_error
        self.status_calls = 0
        self.result_calls: list[str] = []

    def create_task_group(self) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        return "group-1"

    def add_runs(self, group_id, companies):
        return [f"run-{index}" for index, _ in enumerate(companies)]

    def get_group_status(self, group_id):
        self.status_calls += 1
        if self.poll_error is not None:
            raise self.poll_error
        return TaskGroupStatus(is_active=self.status_calls <= self.active_polls, status_counts={})

    def get_run_result(self, run_id):
        self.result_calls.append(run_id)
        if run_id not in self.results:
            raise ResearchProviderError("not ready", code="RESEARCH_404")
        return self.results[run_id]


def _runner(provider, sleeps, **kwargs) -> ResearchTaskRunner:
    return ResearchTaskRunner(provider, poll_interval=2.0, sleep=sleeps.append, **kwargs)


def test_completed_batch_maps_results_by_company_id():
    provider = StubProvider(
        active_polls=2,
        results={
            "run-0": RunResult("run-0", "completed", _result("c2", focus="spatial")),
            "run-1": RunResult("run-1", "completed", _result("c1", focus="science")),
        },
    )
    sleeps: list[float] = []
    batch = _runner(provider, sleeps).run(COMPANIES)
    assert batch.state is BatchState.COMPLETED
    assert batch.poll_attempts == 3
    assert sleeps == [2.0, 2.0]
    assert batch.results["c1"].content.focus == "science"
    assert batch.results["c2"].content.focus == "spatial"
    assert batch.missing == 0


def test_unknown_company_id_falls_back_to_run_position():
    provider = StubProvider(
        results={
            "run-0": RunResult("run-0", "completed", _result(None, focus="first")),
            "run-1": RunResult("run-1", "failed", None),
        }
    )
    batch = _runner(provider, []).run(COMPANIES)
    assert batch.results["c1"].content.focus == "first"
    assert batch.results["c2"] is None
    assert batch.missing == 1


def test_timeout_still_collects_finished_runs():
    provider = StubProvider(
        active_polls=100,
        results={"run-0": RunResult("run-0", "completed", _result("c1"))},
    )
    sleeps: list[float] = []
    batch = _runner(provider, sleeps, max_poll_attempts=3).run(COMPANIES)
    assert batch.state is BatchState.TIMED_OUT
    assert batch.poll_attempts == 3
    assert len(sleeps) == 2
    assert batch.results["c1"] is not None
    assert batch.results["c2"] is None
    assert provider.result_calls == ["run-0", "run-1"]


def test_submit_failure_marks_batch_failed():
    provider = StubProvider(submit_error=ResearchProviderError("bad key", code="RESEARCH_401"))
    batch = _runner(provider, []).run(COMPANIES)
    assert batch.state is BatchState.FAILED
    assert batch.error == "bad key"
    assert batch.results == {"c1": None, "c2": None}
    assert provider.status_calls == 0


def test_poll_failure_marks_batch_failed_without_collecting():
    provider = StubProvider(poll_error=ResearchProviderError("boom", code="RESEARCH_500"))
    batch = _runner(provider, []).run(COMPANIES)
    assert batch.state is BatchState.FAILED
    assert provider.result_calls == []
    assert batch.missing == 2


def test_empty_input_completes_without_calls():
    provider = StubProvider()
    batch = _runner(provider, []).run([])
    assert batch.state is BatchState.COMPLETED
    assert provider.status_calls == 0
    assert batch.results == {}


def test_terminal_states_reject_transitions():
    batch = ResearchBatch(companies=[])
    with pytest.raises(ResearchTaskError) as exc_info:
        batch.transition(BatchState.COMPLETED)
    assert exc_info.value.code == "RESEARCH_INVALID_TRANSITION"
    batch.transition(BatchState.POLLING)
    batch.transition(BatchState.TIMED_OUT)
    with pytest.raises(ResearchTaskError):
        batch.transition(BatchState.POLLING)


def test_runner_requires_positive_poll_attempts():
    with pytest.raises(ValueError):
        ResearchTaskRunner(StubProvider(), max_poll_attempts=0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def test_wall_clock_budget_times_out_before_attempts_run_out():
    provider = StubProvider(
        active_polls=100,
        results={"run-1": RunResult("run-1", "completed", _result("c2"))},
    )
    clock = FakeClock()
    runner = ResearchTaskRunner(
        provider,
        poll_interval=2.0,
        max_poll_attempts=50,
        max_wait_seconds=5.0,
        sleep=clock.sleep,
        clock=clock,
    )
    batch = runner.run(COMPANIES)
    assert batch.state is BatchState.TIMED_OUT
    assert batch.poll_attempts == 3
    assert batch.elapsed_seconds == 6.0
    assert batch.results["c2"] is not None
    assert batch.results["c1"] is None


def test_missing_group_id_raises_coded_error():
    class NoGroupProvider(StubProvider):
        def create_task_group(self):
            return None

    with pytest.raises(ResearchTaskError) as exc_info:
        _runner(NoGroupProvider(), []).run(COMPANIES)
    assert exc_info.value.code == "RESEARCH_GROUP_MISSING"


def test_runner_rejects_non_positive_wait_budget():
    with pytest.raises(ValueError):
        ResearchTaskRunner(StubProvider(), max_wait_seconds=0)
