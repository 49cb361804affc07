"""Run-summary telemetry for the ingest and refresh jobs.

Events go to the `telemetry` logger and, when configured, to a JSONL file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("telemetry")

_FORMATS = {"json", "text"}

INGEST_JOB = "ingest"
REFRESH_JOB = "refresh"
RUN_COMPLETED_EVENT = "run_completed"


@dataclass(frozen=True)
class TelemetryConfig:
    format: str = "text"
    path: Path | None = None

    @classmethod
    def build(cls, format: str | None, path: str | None) -> TelemetryConfig:
        fmt = (format or "text").strip().lower()
        return cls(
            format=fmt if fmt in _FORMATS else "text",
            path=Path(path).expanduser() if path else None,
        )


class Telemetry:
    """Emit structured telemetry to the log and optional file."""

    def __init__(self, config: TelemetryConfig) -> None:
        self._config = config
        if self._config.path:
            self._config.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    def emit(self, module: str, event: str, **fields: Any) -> dict[str, Any]:
        payload = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "module": module,
            "event": event,
            **fields,
        }
        serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        if self._config.format == "json":
            logger.info(serialized)
        else:
            logger.info("%s %s %s %s", payload["timestamp"], module, event, fields)
        self._write_to_file(serialized)
        return payload

    def emit_run_completed(
        self,
        job: str,
        *,
        counts: Mapping[str, Any],
        started_at: datetime | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """One summary line per job run; any failed item marks the run degraded."""
        status = "degraded" if counts.get("failed") else "ok"
        if started_at is not None:
            fields["duration_seconds"] = round((datetime.now(UTC) - started_at).total_seconds(), 3)
        return self.emit(job, RUN_COMPLETED_EVENT, **{"status": status, **fields, **counts})

    def _write_to_file(self, line: str) -> None:
        if not self._config.path:
            return
        try:
            with self._config.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:  # pragma: no cover
            logger.warning("TELEMETRY_WRITE_ERROR path=%s error=%s", self._config.path, exc)


_TELEMETRY: Telemetry | None = None


def configure_telemetry(config: TelemetryConfig) -> Telemetry:
    """Install the process-wide telemetry sink; called once by CLI entrypoints."""
    global _TELEMETRY  # noqa: PLW0603
    _TELEMETRY = Telemetry(config)
    return _TELEMETRY


def get_telemetry() -> Telemetry:
    global _TELEMETRY  # noqa: PLW0603
    if _TELEMETRY is None:
        _TELEMETRY = Telemetry(TelemetryConfig())
    return _TELEMETRY


def reset_telemetry_for_testing() -> None:  # pragma: no cover - test helper
    global _TELEMETRY  # noqa: PLW0603
    _TELEMETRY = None
