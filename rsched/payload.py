"""Alert payload sent to every delivery channel."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


class _Labelled(enum.Enum):
    @property
    def label(self) -> str:
        """CamelCase name used in human-readable alert text."""
        return "".join(part.capitalize() for part in self.name.split("_"))


class AlertEvent(_Labelled):
    """Event that made an alert fire."""

    ON_START = "on_start"
    ON_SUCCESS = "on_success"
    ON_FAILURE = "on_failure"
    ON_SLA_MISS = "on_sla_miss"
    ON_LATE_START = "on_late_start"


class RunState(_Labelled):
    """Lifecycle state of a run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    KILLED = "killed"
    LOST = "lost"


def _format_ts(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(text: str | None) -> datetime | None:
    if text is None:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class AlertPayload:
    """Stable JSON shape consumed by webhook recipients."""

    event: AlertEvent
    job_id: str
    job_name: str
    run_id: str
    state: RunState
    exit_code: int | None
    attempt: int
    started_at: datetime | None
    finished_at: datetime | None
    host: str
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping of the payload."""
        return {
            "event": self.event.value,
            "job_id": str(self.job_id),
            "job_name": self.job_name,
            "run_id": str(self.run_id),
            "state": self.state.value,
            "exit_code": self.exit_code,
            "attempt": self.attempt,
            "started_at": _format_ts(self.started_at),
            "finished_at": _format_ts(self.finished_at),
            "host": self.host,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertPayload:
        """Rebuild a payload from the mapping produced by ``to_dict``."""
        return cls(
            event=AlertEvent(data["event"]),
            job_id=data["job_id"],
            job_name=data["job_name"],
            run_id=data["run_id"],
            state=RunState(data["state"]),
            exit_code=data.get("exit_code"),
            attempt=int(data["attempt"]),
            started_at=_parse_ts(data.get("started_at")),
            finished_at=_parse_ts(data.get("finished_at")),
            host=data["host"],
            message=data.get("message"),
        )