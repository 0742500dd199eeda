"""Local executor: runs jobs as subprocesses on this host."""

from __future__ import annotations

import errno
import logging
import os
import queue
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import wait as wait_futures
from typing import IO, Any

try:
    import resource
except ImportError:  # not available on Windows
    resource = None

from rsched.execution import (
    AgentError,
    Executor,
    JobSpec,
    KilledError,
    LogChunk,
    RunHandle,
    RunOutcome,
    Shell,
    Stream,
)
from rsched.plugin import PluginTracker, build_plugin_stdin

log = logging.getLogger(__name__)

_READ_SIZE = 8192
_SPAWN_RETRIES = 10
_SPAWN_RETRY_DELAY = 0.02
_ETXTBSY = getattr(errno, "ETXTBSY", 26)
_POLL_SECS = 0.05
_POSIX = os.name == "posix"


def format_shell_line(job: JobSpec) -> str:
    """The job's command followed by its arguments, space separated."""
    return " ".join([job.cmd, *job.args])


def build_command(job: JobSpec) -> list[str]:
    """The argv used to start ``job`` for its shell setting."""
    shell = job.shell
    if shell is Shell.AUTO:
        shell = Shell.CMD if os.name == "nt" else Shell.SH
    if shell is Shell.CMD:
        return ["cmd", "/C", job.cmd, *job.args]
    if shell is Shell.POWERSHELL:
        return ["powershell", "-NoProfile", "-Command", job.cmd, *job.args]
    if shell is Shell.SH:
        return ["/bin/sh", "-c", format_shell_line(job)]
    if shell is Shell.BASH:
        return ["bash", "-c", format_shell_line(job)]
    return [job.cmd, *job.args]


def _spawn(job: JobSpec) -> subprocess.Popen:
    argv = build_command(job)
    env = {**os.environ, **job.env}
    stdin = subprocess.PIPE if job.shell is Shell.PLUGIN else subprocess.DEVNULL
    last_error: OSError | None = None
    # A freshly written executable can briefly fail with "Text file busy".
    for _ in range(_SPAWN_RETRIES):
        try:
            return subprocess.Popen(
                argv,
                cwd=job.cwd,
                env=env,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except OSError as exc:
            if exc.errno != _ETXTBSY:
                raise AgentError(f"io: {exc}") from exc
            last_error = exc
            time.sleep(_SPAWN_RETRY_DELAY)
    raise AgentError(f"io: {last_error}") from last_error


def _in_thread(fn: Callable[..., Any], *args: Any) -> Future:
    future: Future = Future()

    def run() -> None:
        try:
            future.set_result(fn(*args))
        except BaseException as exc:  # delivered through the future
            future.set_exception(exc)

    threading.Thread(target=run, daemon=True).start()
    return future


def _pump_chunks(pipe: IO[bytes], stream: Stream, logs: queue.Queue) -> int:
    total = 0
    with pipe:
        while True:
            try:
                data = pipe.read1(_READ_SIZE)
            except OSError:
                break
            if not data:
                break
            total += len(data)
            logs.put(LogChunk(stream=stream, data=data))
    return total


def _pump_plugin_lines(pipe: IO[bytes], logs: queue.Queue, tracker: PluginTracker) -> int:
    total = 0
    with pipe:
        for raw in pipe:
            line = raw[:-1] if raw.endswith(b"\n") else raw
            if line.endswith(b"\r"):
                line = line[:-1]
            total += len(line) + 1
            stream = tracker.feed(line.decode("utf-8", errors="replace"))
            logs.put(LogChunk(stream=stream, data=line + b"\n"))
    return total


def _feed_stdin(pipe: IO[bytes], payload: str, run_id: str) -> None:
    try:
        pipe.write(payload.encode("utf-8"))
    except OSError as exc:
        log.warning("plugin stdin write failed for run %s: %s", run_id, exc)
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def _close_when_done(readers: tuple[Future, ...], logs: queue.Queue) -> None:
    wait_futures(readers)
    logs.put(None)


def _total_bytes(readers: tuple[Future, ...]) -> int:
    total = 0
    for reader in readers:
        try:
            total += reader.result()
        except Exception:
            pass
    return total


def _rusage_children() -> dict[str, Any]:
    """Peak RSS and CPU times of reaped children; None where unsupported."""
    if resource is None:
        return {"peak_rss_bytes": None, "cpu_user_secs": None, "cpu_sys_secs": None}
    try:
        usage = resource.getrusage(resource.RUSAGE_CHILDREN)
    except (OSError, ValueError):
        return {"peak_rss_bytes": None, "cpu_user_secs": None, "cpu_sys_secs": None}
    maxrss = max(int(usage.ru_maxrss), 0)
    # Kilobytes on Linux, bytes on macOS.
    rss = maxrss if os.uname().sysname == "Darwin" else maxrss * 1024
    return {
        "peak_rss_bytes": rss,
        "cpu_user_secs": float(usage.ru_utime),
        "cpu_sys_secs": float(usage.ru_stime),
    }


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


def _supervise(
    proc: subprocess.Popen,
    readers: tuple[Future, ...],
    timeout_secs: int,
    run_id: str,
    kill_event: threading.Event,
    tracker: PluginTracker | None,
) -> RunOutcome:
    deadline = time.monotonic() + timeout_secs if timeout_secs > 0 else None
    while True:
        try:
            returncode = proc.wait(timeout=_POLL_SECS)
        except subprocess.TimeoutExpired:
            if kill_event.is_set():
                log.debug("kill requested for run %s", run_id)
                _hard_kill(proc)
                proc.wait()
                raise KilledError() from None
            if deadline is not None and time.monotonic() >= deadline:
                log.warning("timeout exceeded for run %s, killing", run_id)
                _hard_kill(proc)
                proc.wait()
                return RunOutcome(
                    exit_code=None,
                    timed_out=True,
                    log_bytes=_total_bytes(readers),
                    **_rusage_children(),
                )
            continue
        code = returncode if returncode >= 0 else None
        log_bytes = _total_bytes(readers)
        exit_code = tracker.final_exit_code(code) if tracker is not None else code
        return RunOutcome(exit_code=exit_code, log_bytes=log_bytes, **_rusage_children())


def _signal_sender(pid: int, run_id: str) -> Callable[[int], None]:
    def send(sig: int) -> None:
        if not _POSIX:
            log.warning("sending signals is not supported on this platform (run %s)", run_id)
            return
        try:
            os.kill(pid, sig)
        except OSError as exc:
            log.warning("kill(%s) failed for run %s: %s", sig, run_id, exc)
        else:
            log.debug("signal %s sent to run %s", sig, run_id)

    return send


class LocalExecutor(Executor):
    """Runs jobs as child processes of the current process."""

    def dispatch(self, run_id: Any, job: JobSpec) -> RunHandle:
        """Start ``job``; stdout and stderr stream back as log chunks."""
        run_key = str(run_id)
        is_plugin = job.shell is Shell.PLUGIN
        tracker = PluginTracker() if is_plugin else None

        proc = _spawn(job)
        logs: queue.Queue = queue.Queue()

        if is_plugin and proc.stdin is not None:
            threading.Thread(
                target=_feed_stdin,
                args=(proc.stdin, build_plugin_stdin(run_id, job), run_key),
                daemon=True,
            ).start()

        if tracker is not None:
            stdout_reader = _in_thread(_pump_plugin_lines, proc.stdout, logs, tracker)
        else:
            stdout_reader = _in_thread(_pump_chunks, proc.stdout, Stream.STDOUT, logs)
        stderr_reader = _in_thread(_pump_chunks, proc.stderr, Stream.STDERR, logs)
        readers = (stdout_reader, stderr_reader)
        threading.Thread(target=_close_when_done, args=(readers, logs), daemon=True).start()

        kill_event = threading.Event()
        outcome = _in_thread(
            _supervise, proc, readers, job.timeout_secs, run_key, kill_event, tracker
        )
        return RunHandle(
            run_id=run_key,
            logs=logs,
            outcome=outcome,
            kill_event=kill_event,
            signal_sender=_signal_sender(proc.pid, run_key),
        )