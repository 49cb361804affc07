import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

from tools import telemetry


def test_telemetry_writes_json_file(tmp_path: Path):
    log_path = tmp_path / "logs" / "telemetry.log"
    sink = telemetry.configure_telemetry(telemetry.TelemetryConfig.build("json", str(log_path)))

    sink.emit(module="ingest", event="run_summary", candidates=3)

    assert log_path.exists()
    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    payload = json.loads(lines[-1])
    assert payload["module"] == "ingest"
    assert payload["event"] == "run_summary"
    assert payload["candidates"] == 3
    assert payload["timestamp"].endswith("Z")


def test_telemetry_defaults_to_text():
    sink = telemetry.get_telemetry()
    assert sink.config.format == "text"
    assert sink.config.path is None
    # Should not raise when emitting text
    payload = sink.emit(module="refresh", event="noop")
    assert payload["event"] == "noop"


def test_unknown_format_falls_back_to_text():
    config = telemetry.TelemetryConfig.build("xml", None)
    assert config.format == "text"


def test_run_completed_marks_failures_as_degraded(tmp_path: Path):
    log_path = tmp_path / "telemetry.jsonl"
    sink = telemetry.configure_telemetry(telemetry.TelemetryConfig.build("json", str(log_path)))

    ok = sink.emit_run_completed(telemetry.REFRESH_JOB, counts={"refreshed": 2, "failed": 0})
    degraded = sink.emit_run_completed(
        telemetry.INGEST_JOB,
        counts={"companies_created": 1, "failed": 1},
        started_at=datetime.now(UTC) - timedelta(seconds=5),
        dry_run=False,
    )

    assert ok["module"] == "refresh"
    assert ok["event"] == telemetry.RUN_COMPLETED_EVENT
    assert ok["status"] == "ok"
    assert "duration_seconds" not in ok
    assert degraded["status"] == "degraded"
    assert degraded["duration_seconds"] >= 5
    lines = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert [line["module"] for line in lines] == ["refresh", "ingest"]
    assert lines[1]["companies_created"] == 1
