import json

import httpx
import pytest

from labwatch.clients.parallel import (
    ParallelClient,
    ResearchProviderError,
    ResearchProviderSchemaError,
)
from labwatch.models.company import KnownCompany


def _client(handler) -> ParallelClient:
    http_client = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://api.parallel.ai")
    return ParallelClient("key", http_client=http_client, sleep=lambda _: None)


def test_task_group_lifecycle():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        assert request.headers["x-api-key"] == "key"
        path = request.url.path
        if path == "/v1beta/tasks/groups":
            return httpx.Response(200, json={"taskgroup_id": "tg_1"})
        if path == "/v1beta/tasks/groups/tg_1/runs":
            body = json.loads(request.content)
            assert body["inputs"][0]["input"]["company_id"] == "c1"
            assert body["default_task_spec"]["output_schema"]["type"] == "json"
            return httpx.Response(200, json={"run_ids": ["run_1"]})
        if path == "/v1beta/tasks/groups/tg_1":
            return httpx.Response(
                200,
                json={"status": {"is_active": False, "task_run_status_counts": {"completed": 1}}},
            )
        if path == "/v1/tasks/runs/run_1/result":
            return httpx.Response(
                200,
                json={
                    "run": {"status": "completed"},
                    "output": {
                        "content": json.dumps({"company_id": "c1", "employee_count": 12}),
                        "basis": [{"field": "employee_count", "citations": [{"url": "https://a.com"}]}],
                    },
                },
            )
        return httpx.Response(404)

    client = _client(handler)
    group_id = client.create_task_group()
    run_ids = client.add_runs(group_id, [KnownCompany(id="c1", name="Periodic Labs")])
    status = client.get_group_status(group_id)
    run = client.get_run_result(run_ids[0])

    assert group_id == "tg_1"
    assert run_ids == ["run_1"]
    assert not status.is_active
    assert status.status_counts == {"completed": 1}
    assert run.completed
    assert run.result.content.employee_count == 12
    assert run.result.basis_for("employee_count").is_corroborated
    assert seen[0] == ("POST", "/v1beta/tasks/groups")


def test_incomplete_run_has_no_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"run": {"status": "running"}})

    run = _client(handler).get_run_result("run_1")
    assert not run.completed
    assert run.result is None


def test_missing_group_id_is_schema_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(ResearchProviderSchemaError):
        _client(handler).create_task_group()


def test_server_errors_retry_then_raise():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    with pytest.raises(ResearchProviderError) as exc_info:
        _client(handler).get_group_status("tg_1")
    assert exc_info.value.code == "RESEARCH_502"
    assert len(calls) == 2


def test_client_errors_fail_fast():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403)

    with pytest.raises(ResearchProviderError) as exc_info:
        _client(handler).create_task_group()
    assert exc_info.value.code == "RESEARCH_403"
    assert len(calls) == 1
