"""Tests for safety event and speeding interval normalization."""

from __future__ import annotations

from datetime import UTC, datetime

from safety_alerts.domain.models import EventSource, SpeedingInterval
from safety_alerts.services.event_normalizer import (
    derive_safety_type,
    extract_video_url,
    first_non_empty,
    normalize_safety_event,
    normalize_safety_events,
    normalize_speeding_interval,
    parse_timestamp,
)

FETCHED_AT = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def _raw_safety_event(**overrides: object) -> dict[str, object]:
    record: dict[str, object] = {
        "id": "212014918232795",
        "time": "2025-01-01T11:50:00Z",
        "vehicle": {"id": "281474976710655", "name": "Truck 101"},
        "driver": {"id": "45646"},
        "behaviorLabels": [{"name": "Harsh Brake", "source": "automated"}],
        "location": {"latitude": 40.7128, "longitude": -74.006},
        "maxAccelerationGForce": 0.52,
        "coachingState": "needsReview",
        "downloadInwardVideoUrl": "https://media.example.com/inward.mp4",
        "downloadForwardVideoUrl": "https://media.example.com/forward.mp4",
    }
    record.update(overrides)
    return record


def test_first_non_empty_skips_blank_values() -> None:
    record = {"a": "", "b": {"c": None}, "d": {"e": "found"}}

    assert first_non_empty(record, ("a", "b.c", "d.e")) == "found"
    assert first_non_empty(record, (lambda r: r.get("missing"), "a")) is None


def test_parse_timestamp_accepts_iso_and_epoch_millis() -> None:
    expected = datetime(2025, 1, 1, 10, 0, tzinfo=UTC)

    assert parse_timestamp("2025-01-01T10:00:00Z") == expected
    assert parse_timestamp(1735725600000) == expected
    assert parse_timestamp("1735725600000") == expected
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_video_url_priority_prefers_forward_camera() -> None:
    record = _raw_safety_event(downloadVideoUrl="https://media.example.com/any.mp4")

    assert extract_video_url(record) == "https://media.example.com/forward.mp4"
    del record["downloadForwardVideoUrl"]
    assert extract_video_url(record) == "https://media.example.com/inward.mp4"


def test_safety_type_from_labels_then_type_fields() -> None:
    labelled = {"behaviorLabels": [{"name": "Harsh Brake"}, {"label": "Red Light"}]}

    assert derive_safety_type(labelled) == "harsh_brake,_red_light"
    assert derive_safety_type({"eventType": "harshTurn"}) == "harshturn"
    assert derive_safety_type({"type": " Harsh  Brake "}) == "harsh_brake"
    assert derive_safety_type({}) == "unknown"


def test_normalize_safety_event_fields() -> None:
    event = normalize_safety_event(_raw_safety_event(), FETCHED_AT)

    assert event is not None
    assert event.source is EventSource.SAFETY
    assert event.id == "212014918232795"
    assert event.type == "harsh_brake"
    assert event.occurred_at == datetime(2025, 1, 1, 11, 50, tzinfo=UTC)
    assert event.asset_id == "281474976710655"
    assert event.vehicle_name == "Truck 101"
    assert event.driver_id == "45646"
    assert event.video_url == "https://media.example.com/forward.mp4"
    assert event.details["coaching_state"] == "needsReview"
    assert event.details["location"] == {"latitude": 40.7128, "longitude": -74.006}


def test_normalize_safety_event_falls_back_to_fetch_time() -> None:
    record = _raw_safety_event()
    del record["time"]

    event = normalize_safety_event(record, FETCHED_AT)

    assert event is not None
    assert event.occurred_at == FETCHED_AT


def test_records_without_id_are_skipped() -> None:
    records = [
        _raw_safety_event(),
        _raw_safety_event(id=None),
        _raw_safety_event(id=""),
    ]

    events = normalize_safety_events(records, FETCHED_AT)

    assert [event.id for event in events] == ["212014918232795"]


def test_records_with_wrong_field_types_are_skipped() -> None:
    records = [
        _raw_safety_event(severity=3),
        "not-a-record",
        _raw_safety_event(id="212014918232796"),
    ]

    events = normalize_safety_events(records, FETCHED_AT)  # type: ignore[arg-type]

    assert [event.id for event in events] == ["212014918232796"]


def test_safety_normalization_is_idempotent() -> None:
    record = _raw_safety_event()

    first = normalize_safety_event(record, FETCHED_AT)
    second = normalize_safety_event(record, datetime(2025, 1, 2, tzinfo=UTC))

    assert first is not None and second is not None
    assert first.id == second.id
    assert first.model_dump() == second.model_dump()


def test_speeding_interval_identity_uses_verbatim_times() -> None:
    interval = SpeedingInterval(
        asset_id="V1",
        start_time="2025-01-01T10:00:00Z",
        end_time="2025-01-01T10:01:21Z",
        max_speed_mph=82.0,
        speed_limit_mph=65.0,
        severity_level="severe",
    )

    event = normalize_speeding_interval(interval, FETCHED_AT)

    assert event.id == "speeding:V1:2025-01-01T10:00:00Z:2025-01-01T10:01:21Z"
    assert event.source is EventSource.SPEEDING_INTERVAL
    assert event.type == "severe_speeding"
    assert event.severity == "SEVERE"
    assert event.occurred_at == datetime(2025, 1, 1, 10, 0, tzinfo=UTC)
    assert event.ended_at == datetime(2025, 1, 1, 10, 1, 21, tzinfo=UTC)
    assert event.details["over_limit_mph"] == 17.0
    assert event.video_url is None


def test_speeding_interval_without_severity_defaults_to_severe() -> None:
    interval = SpeedingInterval(
        asset_id="V2",
        start_time="2025-01-01T10:00:00.000Z",
        end_time="2025-01-01T10:02:00.000Z",
    )

    event = normalize_speeding_interval(interval, FETCHED_AT)

    assert event.severity == "SEVERE"
    assert event.id == "speeding:V2:2025-01-01T10:00:00.000Z:2025-01-01T10:02:00.000Z"
