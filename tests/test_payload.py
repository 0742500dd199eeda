import json
from datetime import datetime, timedelta, timezone

import pytest

from rsched.payload import AlertEvent, AlertPayload, RunState


def make_payload(**overrides):
    values = dict(
        event=AlertEvent.ON_FAILURE,
        job_id="job-1",
        job_name="nightly-etl",
        run_id="run-1",
        state=RunState.FAILED,
        exit_code=1,
        attempt=2,
        started_at=datetime(2024, 1, 1, 2, 0, tzinfo=timezone.utc),
        finished_at=datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc),
        host="test",
        message="disk full",
    )
    values.update(overrides)
    return AlertPayload(**values)


def test_round_trip_through_dict():
    payload = make_payload()
    assert AlertPayload.from_dict(payload.to_dict()) == payload


def test_round_trip_through_json_text():
    payload = make_payload()
    text = json.dumps(payload.to_dict())
    assert AlertPayload.from_dict(json.loads(text)) == payload


def test_optional_fields_round_trip_as_none():
    payload = make_payload(exit_code=None, started_at=None, finished_at=None, message=None)
    data = payload.to_dict()
    assert data["started_at"] is None
    assert data["exit_code"] is None
    assert AlertPayload.from_dict(data) == payload


def test_dict_carries_names_and_attempt():
    data = make_payload().to_dict()
    assert data["job_name"] == "nightly-etl"
    assert data["attempt"] == 2
    assert data["event"] == AlertEvent.ON_FAILURE.value
    assert data["state"] == RunState.FAILED.value


def test_timestamps_are_utc():
    offset = timezone(timedelta(hours=2))
    local = datetime(2024, 1, 1, 4, 0, tzinfo=offset)
    data = make_payload(started_at=local).to_dict()
    assert data["started_at"].endswith("Z")
    restored = AlertPayload.from_dict(data)
    assert restored.started_at == local


def test_restored_payload_labels_are_camel_case():
    data = make_payload(event=AlertEvent.ON_SLA_MISS).to_dict()
    restored = AlertPayload.from_dict(data)
    assert restored.event.label == "OnSlaMiss"
    assert restored.state.label == "Failed"


def test_unknown_event_rejected():
    data = make_payload().to_dict()
    data["event"] = "bogus"
    with pytest.raises(ValueError):
        AlertPayload.from_dict(data)