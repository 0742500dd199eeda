import asyncio
import time

import pytest

from rsched.dedup import (
    DEFAULT_MAX_ENTRIES,
    DEFAULT_WINDOW_SECS,
    ENV_MAX,
    ENV_WINDOW,
    WebhookDedup,
    run_pruner,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


def test_first_insert_is_unique():
    c = WebhookDedup(60, 16)
    assert c.check_and_insert("a") is False
    assert len(c) == 1


def test_second_insert_within_window_is_duplicate():
    c = WebhookDedup(60, 16)
    assert c.check_and_insert("a") is False
    assert c.check_and_insert("a") is True


def test_distinct_keys_are_independent():
    c = WebhookDedup(60, 16)
    assert c.check_and_insert("a") is False
    assert c.check_and_insert("b") is False


def test_prune_removes_expired():
    c = WebhookDedup(0.001, 16)
    c.check_and_insert("a")
    time.sleep(0.01)
    c.prune()
    assert len(c) == 0


def test_prune_keeps_fresh_entries():
    clock = FakeClock()
    c = WebhookDedup(60, 16, clock=clock)
    c.check_and_insert("old")
    clock.advance(50)
    c.check_and_insert("new")
    clock.advance(20)
    c.prune()
    assert "new" in c
    assert "old" not in c
    assert len(c) == 1


def test_evicts_when_full():
    clock = FakeClock()
    c = WebhookDedup(60, 2, clock=clock)
    c.check_and_insert("a")
    clock.advance(0.002)
    c.check_and_insert("b")
    clock.advance(0.002)
    c.check_and_insert("c")
    assert len(c) == 2
    assert c.check_and_insert("a") is False


def test_stale_entry_is_refreshed_as_new():
    clock = FakeClock()
    c = WebhookDedup(60, 16, clock=clock)
    assert c.check_and_insert("a") is False
    clock.advance(61)
    assert c.check_and_insert("a") is False
    assert c.check_and_insert("a") is True
    assert len(c) == 1


def test_max_entries_floor_is_one():
    c = WebhookDedup(60, 0)
    assert c.max_entries == 1
    c.check_and_insert("a")
    c.check_and_insert("b")
    assert len(c) == 1
    assert "b" in c


def test_from_env_reads_values():
    c = WebhookDedup.from_env({ENV_WINDOW: "10", ENV_MAX: "5"})
    assert c.window == 10
    assert c.max_entries == 5


@pytest.mark.parametrize(
    "environ",
    [{}, {ENV_WINDOW: "abc", ENV_MAX: "-3"}, {ENV_WINDOW: " 10", ENV_MAX: "1.5"}],
)
def test_from_env_falls_back_to_defaults(environ):
    c = WebhookDedup.from_env(environ)
    assert c.window == DEFAULT_WINDOW_SECS
    assert c.max_entries == DEFAULT_MAX_ENTRIES


def test_defaults_match_documented_values():
    assert DEFAULT_WINDOW_SECS == 300
    assert DEFAULT_MAX_ENTRIES == 10_000
    assert WebhookDedup.from_env({}).window == 300


def test_negative_window_rejected():
    with pytest.raises(ValueError):
        WebhookDedup(-1, 10)


@pytest.mark.asyncio
async def test_run_pruner_prunes_periodically():
    c = WebhookDedup(0.001, 16)
    c.check_and_insert("a")
    task = asyncio.create_task(run_pruner(c, 0.01))
    try:
        await asyncio.sleep(0.1)
        assert len(c) == 0
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task