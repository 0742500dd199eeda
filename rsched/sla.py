"""SLA evaluation for scheduled and running runs."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from datetime import datetime, time, timezone

from rsched.payload import AlertEvent


class SlaBreach(enum.Enum):
    """Result of checking a run against its SLA."""

    NONE = "none"
    SLA_MISS = "sla_miss"
    LATE_START = "late_start"

    def to_event(self) -> AlertEvent | None:
        """The alert event for this breach, or None when there is none."""
        if self is SlaBreach.SLA_MISS:
            return AlertEvent.ON_SLA_MISS
        if self is SlaBreach.LATE_START:
            return AlertEvent.ON_LATE_START
        return None


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _whole_seconds(later: datetime, earlier: datetime) -> int:
    return max(int((_as_utc(later) - _as_utc(earlier)).total_seconds()), 0)


def evaluate_sla(
    now: datetime,
    scheduled_for: datetime,
    started_at: datetime | None,
    sla_secs: int,
    late_start_grace_secs: int,
) -> SlaBreach:
    """SLA state of a run; an ``sla_secs`` of 0 disables the running check."""
    if started_at is not None:
        if sla_secs == 0:
            return SlaBreach.NONE
        if _whole_seconds(now, started_at) > sla_secs:
            return SlaBreach.SLA_MISS
        return SlaBreach.NONE
    if _whole_seconds(now, scheduled_for) > late_start_grace_secs:
        return SlaBreach.LATE_START
    return SlaBreach.NONE


def evaluate_must_times(
    now: datetime,
    started_at: datetime | None,
    must_start_times: Sequence[time],
    must_complete_times: Sequence[time],
) -> SlaBreach:
    """Check a run against UTC must-start and must-complete times of day.

    Not started and past every must-start time: late start. Started and past
    a must-complete time that falls after the start: SLA miss.
    """
    now = _as_utc(now)
    today = now.date()

    def deadline(t: time) -> datetime:
        return datetime.combine(today, t.replace(tzinfo=None), tzinfo=timezone.utc)

    if started_at is None and must_start_times:
        if all(now > deadline(t) for t in must_start_times):
            return SlaBreach.LATE_START
        return SlaBreach.NONE

    if started_at is not None:
        started = _as_utc(started_at)
        for t in must_complete_times:
            limit = deadline(t)
            if limit > started and now > limit:
                return SlaBreach.SLA_MISS
    return SlaBreach.NONE