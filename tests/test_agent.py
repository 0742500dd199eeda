import queue
import threading

from rsched.agent import AgentLogChunk, RunResult, exec_dispatch, shell_command


def _collect_until(log_queue, needle):
    chunks = []
    data = b""
    while needle not in data:
        chunk = log_queue.get(timeout=10)
        chunks.append(chunk)
        data += chunk.data
    return chunks


def _run(cmd, args=(), env=None, cwd="", timeout_secs=0, kill=False):
    log_queue = queue.Queue()
    kill_event = threading.Event()
    if kill:
        kill_event.set()
    result = exec_dispatch(
        cmd, list(args), env or {}, cwd, timeout_secs, log_queue, "r1", kill_event
    )
    return result, log_queue


def test_shell_command_joins_args_for_sh():
    assert shell_command("echo", ["a", "b"]) == ["/bin/sh", "-c", "echo a b"]
    assert shell_command("echo", []) == ["/bin/sh", "-c", "echo"]


def test_exit_code_passthrough():
    result, _ = _run("exit 3")
    assert result == RunResult(run_id="r1", exit_code=3, timed_out=False)


def test_stdout_streamed_as_stream_zero():
    result, log_queue = _run("echo hello")
    chunks = _collect_until(log_queue, b"hello")
    assert result.exit_code == 0
    assert all(isinstance(c, AgentLogChunk) for c in chunks)
    assert {c.stream for c in chunks} == {0}
    assert {c.run_id for c in chunks} == {"r1"}
    assert all(c.ts_unix_ms > 0 for c in chunks)


def test_stderr_streamed_as_stream_one():
    _, log_queue = _run("echo oops 1>&2")
    chunks = _collect_until(log_queue, b"oops")
    assert {c.stream for c in chunks} == {1}


def test_args_are_appended_to_command_line():
    _, log_queue = _run("echo", args=["alpha", "beta"])
    chunks = _collect_until(log_queue, b"alpha beta")
    assert b"alpha beta" in b"".join(c.data for c in chunks)


def test_env_reaches_child():
    _, log_queue = _run("echo $RSCHED_AGENT_VAR", env={"RSCHED_AGENT_VAR": "agentvalue"})
    chunks = _collect_until(log_queue, b"agentvalue")
    assert b"agentvalue" in b"".join(c.data for c in chunks)


def test_timeout_reports_timed_out():
    result, _ = _run("exec sleep 30", timeout_secs=1)
    assert result.timed_out is True
    assert result.exit_code == -1


def test_kill_event_stops_run():
    result, _ = _run("exec sleep 30", kill=True)
    assert result.exit_code == -1
    assert result.timed_out is False


def test_spawn_failure_reports_minus_one(tmp_path):
    result, log_queue = _run("echo hi", cwd=str(tmp_path / "missing"))
    assert result.exit_code == -1
    assert log_queue.empty()