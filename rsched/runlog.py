"""Capping persisted run logs and turning run outcomes into run states."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from rsched.execution import AgentError, LogChunk, RunOutcome, Stream
from rsched.payload import RunState

LOG_CAP = 100 * 1024 * 1024

_LABELS = {
    Stream.STDOUT: "stdout",
    Stream.STDERR: "stderr",
    Stream.PLUGIN: "plugin",
}


def stream_label(stream: Stream) -> str:
    """Name under which chunks of ``stream`` are stored."""
    return _LABELS[stream]


@dataclass
class LogCapture:
    """Tracks how much of a run's output is kept, up to ``cap`` bytes.

    Once a chunk would push the kept total past the cap, that chunk and every
    later one is dropped and the capture is marked truncated. ``total_bytes``
    counts all output seen, kept or not.
    """

    cap: int = LOG_CAP
    total_bytes: int = 0
    next_seq: int = 0
    truncated: bool = False

    def __post_init__(self) -> None:
        if self.cap < 0:
            raise ValueError("cap must not be negative")

    def accept(self, chunk: LogChunk) -> int | None:
        """Sequence number to store ``chunk`` under, or None if it is dropped."""
        size = len(chunk.data)
        seq: int | None = None
        if not self.truncated and self.total_bytes + size <= self.cap:
            seq = self.next_seq
            self.next_seq += 1
        else:
            self.truncated = True
        self.total_bytes += size
        return seq


def _zero_is_success(code: int) -> bool:
    return code == 0


def run_state_for_outcome(
    outcome: RunOutcome | BaseException,
    evaluate: Callable[[int], bool] | None = None,
) -> RunState:
    """Final state of a run from what its executor reported.

    ``outcome`` is the RunOutcome, or the exception the run ended with: an
    AgentError means the run was killed, anything else that it was lost.
    ``evaluate`` tells whether an exit code counts as success (conditional
    successes included); by default only 0 does.
    """
    if isinstance(outcome, AgentError):
        return RunState.KILLED
    if isinstance(outcome, BaseException):
        return RunState.LOST
    if outcome.timed_out or outcome.exit_code is None:
        return RunState.FAILED
    check = evaluate or _zero_is_success
    return RunState.SUCCESS if check(outcome.exit_code) else RunState.FAILED