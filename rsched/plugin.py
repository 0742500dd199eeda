"""Plugin protocol: stdin payload and JSON event lines on stdout."""

from __future__ import annotations

import json
from typing import Any

from rsched.execution import JobSpec, Stream

_EVENT_KEYS = frozenset({"progress", "perf", "complete", "description"})
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


def build_plugin_stdin(run_id: Any, job: JobSpec) -> str:
    """Single JSON line ``{"id":...,"params":{env}}`` ending in a newline."""
    payload = {"id": str(run_id), "params": {k: str(v) for k, v in job.env.items()}}
    return json.dumps(payload, separators=(",", ":"), sort_keys=True) + "\n"


def is_plugin_event(value: Any) -> bool:
    """True if ``value`` is an object carrying a recognised plugin event key."""
    return isinstance(value, dict) and not _EVENT_KEYS.isdisjoint(value)


def _as_i64(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if _I64_MIN <= value <= _I64_MAX:
        return value
    return None


def _to_i32(value: int) -> int:
    return ((value + 2**31) % 2**32) - 2**31


def _is_complete(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    number = _as_i64(value)
    return number is not None and number != 0


class PluginTracker:
    """Classifies plugin stdout lines and tracks the ``complete`` event."""

    def __init__(self) -> None:
        self.completed = False
        self.exit_code: int | None = None

    def feed(self, line: str) -> Stream:
        """Classify one stdout line, recording completion if it reports it."""
        trimmed = line.strip()
        if not trimmed.startswith("{"):
            return Stream.STDOUT
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            return Stream.STDOUT
        if not is_plugin_event(parsed):
            return Stream.STDOUT
        if "complete" in parsed and _is_complete(parsed["complete"]):
            self.completed = True
            if "code" in parsed:
                code = _as_i64(parsed["code"])
                if code is not None:
                    self.exit_code = _to_i32(code)
            elif self.exit_code is None:
                self.exit_code = 0
        return Stream.PLUGIN

    def final_exit_code(self, process_code: int | None) -> int | None:
        """Exit code for the run: the plugin's own, or a failure if it never completed."""
        if self.completed:
            return self.exit_code
        if process_code is not None and process_code != 0:
            return process_code
        return -1