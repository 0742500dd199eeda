# rsched

Building blocks for a job scheduler. The package runs jobs as local
processes and streams their output. It hosts plugins that speak a
line-based JSON protocol, and it decides whether a run has missed its
SLA. It also posts alerts to Slack or to a generic webhook, rejects
replayed webhook requests, and caps the log output stored per run.

## Modules

| Module | Purpose |
| --- | --- |
| `rsched.execution` | Job description (`JobSpec`, `Shell`), output chunks (`LogChunk`, `Stream`), results (`RunOutcome`, `RunHandle`), the `Executor` interface and the errors `AgentError`, `KilledError` and `DuplicateRunError`. |
| `rsched.plugin` | The plugin protocol. `build_plugin_stdin` writes the JSON line sent to a plugin's stdin. `is_plugin_event` recognises event objects. `PluginTracker` classifies stdout lines and settles the exit code from `complete` events. |
| `rsched.local` | `LocalExecutor`, plus `build_command` and `format_shell_line`. |
| `rsched.agent` | `exec_dispatch` runs one command through the platform shell and reports a `RunResult`. Its output goes out as `AgentLogChunk` records. |
| `rsched.payload` | `AlertPayload`, the JSON body of an alert, with `AlertEvent` and `RunState`. |
| `rsched.sla` | `evaluate_sla` and `evaluate_must_times`, which return a `SlaBreach`. |
| `rsched.channels` | The `Channel` interface, `SlackChannel`, `WebhookChannel`, `slack_text`, and the errors `AlertError` and `SmtpNotConfiguredError`. |
| `rsched.dedup` | `WebhookDedup`, a time-windowed replay cache, and the async `run_pruner`. |
| `rsched.triggers` | File-trigger matching (`event_matches`, `FileEventKind`) and cluster peer specs (`parse_peer`, `PeerNode`). |
| `rsched.runlog` | `LogCapture` caps the stored log bytes per run, 100 MiB by default. `stream_label` names each stream. `run_state_for_outcome` maps an outcome to a final `RunState`. |

## Running a job locally

```python
from rsched.execution import JobSpec
from rsched.local import LocalExecutor

job = JobSpec(name="hello", cmd="echo hello", timeout_secs=30)
handle = LocalExecutor().dispatch("run-1", job)
for chunk in handle.iter_logs():
    print(chunk.stream.value, chunk.data)
outcome = handle.wait()          # RunOutcome; exit_code 0 here
```

With `Shell.AUTO`, the command runs through `/bin/sh -c` on POSIX and
through `cmd /C` on Windows. A timeout of `0` means no limit.

When a run exceeds its timeout, the executor kills it. The outcome then
has `timed_out=True` and `exit_code=None`.

`handle.kill()` stops the run, and `handle.wait()` then raises
`KilledError`. `handle.send_signal(n)` forwards a signal number to the
process on POSIX.

With `Shell.PLUGIN`, the command starts directly. It receives
`{"id": ..., "params": {env}}` as one line on stdin.

Stdout lines that carry `progress`, `perf`, `complete` or `description`
arrive as `Stream.PLUGIN` chunks. A `{"complete": 1, "code": N}` line
sets the exit code. A plugin that never reports `complete` counts as
failed.

## Checking an SLA

```python
from datetime import datetime, timedelta, timezone
from rsched.sla import evaluate_sla

now = datetime.now(timezone.utc)
breach = evaluate_sla(
    now,
    now - timedelta(seconds=200),   # scheduled for
    now - timedelta(seconds=120),   # started at
    60,                             # soft SLA in seconds
    30,                             # late-start grace in seconds
)
event = breach.to_event()           # AlertEvent.ON_SLA_MISS, or None
```

Passing `None` as the start time checks for a late start instead. An
SLA of `0` switches the running-time check off.

`evaluate_must_times` applies the same idea to lists of UTC
times of day.

## Sending an alert

```python
import asyncio
from rsched.channels import SlackChannel
from rsched.payload import AlertEvent, AlertPayload, RunState

payload = AlertPayload(
    event=AlertEvent.ON_FAILURE, job_id="job-1", job_name="nightly-etl",
    run_id="run-1", state=RunState.FAILED, exit_code=1, attempt=2,
    started_at=None, finished_at=None, host="scheduler", message="disk full",
)
asyncio.run(SlackChannel("https://hooks.example.com/hook").deliver(payload))
```

`WebhookChannel(url)` posts `payload.to_dict()` as JSON. An HTTP
failure or an error status raises `AlertError`.

## Rejecting replayed webhooks

```python
from rsched.dedup import WebhookDedup

cache = WebhookDedup.from_env()     # RSCHED_WEBHOOK_DEDUP_WINDOW_SECS / RSCHED_WEBHOOK_DEDUP_MAX
if cache.check_and_insert("deploy-hook:3f2a..."):
    ...  # seen within the window: reject as a duplicate
```

The defaults are a 300-second window and 10,000 entries. When the
cache is full, the oldest entry is evicted.

## Parsing a cluster peer

```python
from rsched.triggers import parse_peer

node = parse_peer("2@10.0.0.2:9100")   # PeerNode(id=2, addr="10.0.0.2:9100")
```

## What this package does not do

- It has no command-line program.
- It has no scheduler loop, no HTTP API and no database.
- It does not send e-mail, and it has no function that fans a payload out to several channels.
- It has no network server for remote agents. `rsched.agent` only runs a dispatch in-process.
- It does not watch files itself. `rsched.triggers` only decides whether an event matches.