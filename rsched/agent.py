"""Agent-side execution of a single dispatched command."""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import IO

log = logging.getLogger(__name__)

_READ_SIZE = 8192
_POLL_SECS = 0.05
_POSIX = os.name == "posix"

STDOUT_STREAM = 0
STDERR_STREAM = 1


@dataclass(frozen=True)
class AgentLogChunk:
    """A piece of output sent from the agent; stream 0 is stdout, 1 is stderr."""

    run_id: str
    stream: int
    ts_unix_ms: int
    data: bytes


@dataclass(frozen=True)
class RunResult:
    """Final report of one dispatched run."""

    run_id: str
    exit_code: int
    timed_out: bool = False
    peak_rss_bytes: int = 0
    cpu_user_ms: int = 0
    cpu_sys_ms: int = 0


def shell_command(cmd: str, args: Sequence[str]) -> list[str]:
    """Argv running ``cmd`` plus ``args`` through the platform shell."""
    line = " ".join([cmd, *args])
    if os.name == "nt":
        return ["cmd", "/C", line]
    return ["/bin/sh", "-c", line]


def _pump(pipe: IO[bytes], stream: int, log_queue: queue.Queue, run_id: str) -> None:
    with pipe:
        while True:
            try:
                data = pipe.read1(_READ_SIZE)
            except OSError:
                break
            if not data:
                break
            log_queue.put(
                AgentLogChunk(
                    run_id=run_id,
                    stream=stream,
                    ts_unix_ms=time.time_ns() // 1_000_000,
                    data=data,
                )
            )


def _hard_kill(proc: subprocess.Popen) -> None:
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except OSError:
            pass
    try:
        proc.kill()
    except OSError:
        pass


def exec_dispatch(
    cmd: str,
    args: Sequence[str],
    env: Mapping[str, str],
    cwd: str,
    timeout_secs: int,
    log_queue: queue.Queue,
    run_id: str,
    kill_event: threading.Event,
) -> RunResult:
    """Run one dispatch as a local subprocess and report how it ended.

    Output is pushed to ``log_queue`` as AgentLogChunk objects. Setting
    ``kill_event`` stops the run. A failed start, a kill or a timeout all
    report exit code -1.
    """
    try:
        proc = subprocess.Popen(
            shell_command(cmd, args),
            cwd=cwd or None,
            env={**os.environ, **env},
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        log.warning("spawn failed for run %s: %s", run_id, exc)
        return RunResult(run_id=run_id, exit_code=-1)

    for pipe, stream in ((proc.stdout, STDOUT_STREAM), (proc.stderr, STDERR_STREAM)):
        threading.Thread(
            target=_pump, args=(pipe, stream, log_queue, run_id), daemon=True
        ).start()

    deadline = time.monotonic() + timeout_secs if timeout_secs > 0 else None
    while True:
        try:
            returncode = proc.wait(timeout=_POLL_SECS)
        except subprocess.TimeoutExpired:
            if kill_event.is_set():
                _hard_kill(proc)
                proc.wait()
                return RunResult(run_id=run_id, exit_code=-1)
            if deadline is not None and time.monotonic() >= deadline:
                _hard_kill(proc)
                proc.wait()
                return RunResult(run_id=run_id, exit_code=-1, timed_out=True)
            continue
        code = returncode if returncode >= 0 else -1
        return RunResult(run_id=run_id, exit_code=code)