"""Executor abstraction: job specs, log chunks, run handles and outcomes."""

from __future__ import annotations

import abc
import enum
import queue
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone


class AgentError(Exception):
    """Failure while starting or running a job."""


class KilledError(AgentError):
    """The run was killed before it finished on its own."""

    def __init__(self, message: str = "killed") -> None:
        super().__init__(message)


class DuplicateRunError(AgentError):
    """A run was dispatched twice with the same id."""

    def __init__(self, message: str = "duplicate run id") -> None:
        super().__init__(message)


class Stream(enum.Enum):
    """Which stream a log chunk came from."""

    STDOUT = "stdout"
    STDERR = "stderr"
    PLUGIN = "plugin"


class Shell(enum.Enum):
    """How a job's command line is started."""

    AUTO = "auto"
    SH = "sh"
    BASH = "bash"
    CMD = "cmd"
    POWERSHELL = "powershell"
    NONE = "none"
    PLUGIN = "plugin"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobSpec:
    """What an executor needs to know to start one run of a job."""

    name: str
    cmd: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    shell: Shell = Shell.AUTO
    timeout_secs: int = 0

    def __post_init__(self) -> None:
        if self.timeout_secs < 0:
            raise ValueError("timeout_secs must not be negative")


@dataclass(frozen=True)
class LogChunk:
    """One chunk of streamed log output; data may hold partial UTF-8."""

    stream: Stream
    data: bytes
    ts: datetime = field(default_factory=_utc_now)


@dataclass
class RunOutcome:
    """Final outcome of a single run."""

    exit_code: int | None
    timed_out: bool = False
    log_bytes: int = 0
    finished_at: datetime = field(default_factory=_utc_now)
    peak_rss_bytes: int | None = None
    cpu_user_secs: float | None = None
    cpu_sys_secs: float | None = None


def _ignore_signal(sig: int) -> None:
    return None


@dataclass(eq=False)
class RunHandle:
    """Handle to a dispatched run.

    Producers put LogChunk objects on ``logs`` and a single ``None`` once
    every stream is closed. ``outcome`` resolves to a RunOutcome, or fails
    with an AgentError such as KilledError.
    """

    run_id: str
    logs: queue.Queue
    outcome: Future
    kill_event: threading.Event = field(default_factory=threading.Event)
    signal_sender: Callable[[int], None] = _ignore_signal

    def iter_logs(self) -> Iterator[LogChunk]:
        """Yield log chunks until all output streams have closed."""
        while True:
            chunk = self.logs.get()
            if chunk is None:
                return
            yield chunk

    def wait(self) -> RunOutcome:
        """Block until the run finishes and return its outcome."""
        return self.outcome.result()

    def kill(self) -> None:
        """Ask for the run to be stopped now."""
        self.kill_event.set()

    def send_signal(self, sig: int) -> None:
        """Forward a unix signal number to the running process."""
        self.signal_sender(int(sig))


class Executor(abc.ABC):
    """Abstraction over where jobs run."""

    @abc.abstractmethod
    def dispatch(self, run_id: str, job: JobSpec) -> RunHandle:
        """Start ``job`` as a new run and return its handle."""