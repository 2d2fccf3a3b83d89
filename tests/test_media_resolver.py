from __future__ import annotations

from datetime import timedelta

from safety_alerts.domain.exceptions import TelemetryAPIError
from safety_alerts.services.media_resolver import MediaResolver
from tests.conftest import NOW, StubTelemetryClient, make_safety_event


def test_exact_id_match_wins() -> None:
    client = StubTelemetryClient(
        safety_events=[
            {
                "id": "other",
                "time": "2025-01-01T12:00:00Z",
                "downloadForwardVideoUrl": "https://media.example.com/other.mp4",
            },
            {
                "id": "evt-1",
                "time": "2025-01-01T12:03:00Z",
                "downloadInwardVideoUrl": "https://media.example.com/evt-1.mp4",
            },
        ]
    )
    resolver = MediaResolver(client, window_minutes=5)

    url = resolver.resolve(make_safety_event("evt-1"))

    assert url == "https://media.example.com/evt-1.mp4"
    window, limit, vehicle_ids = client.safety_calls[0]
    assert window.start == NOW - timedelta(minutes=5)
    assert window.end == NOW + timedelta(minutes=5)
    assert limit == 100
    assert vehicle_ids == ["281474976710655"]


def test_closest_timestamp_used_without_id_match() -> None:
    client = StubTelemetryClient(
        safety_events=[
            {
                "id": "far",
                "time": "2025-01-01T11:56:00Z",
                "mediaUrl": "https://media.example.com/far.mp4",
            },
            {
                "id": "near",
                "occurredAt": "2025-01-01T12:00:30Z",
                "videoUrl": "https://media.example.com/near.mp4",
            },
        ]
    )

    url = MediaResolver(client).resolve(make_safety_event("evt-1"))

    assert url == "https://media.example.com/near.mp4"


def test_match_without_media_returns_none() -> None:
    client = StubTelemetryClient(
        safety_events=[{"id": "evt-1", "time": "2025-01-01T12:00:00Z"}]
    )

    assert MediaResolver(client).resolve(make_safety_event("evt-1")) is None


def test_lookup_failure_returns_none() -> None:
    client = StubTelemetryClient()
    client.safety_error = TelemetryAPIError("timeout")

    assert MediaResolver(client).resolve(make_safety_event("evt-1")) is None


def test_event_without_asset_is_not_looked_up() -> None:
    client = StubTelemetryClient()

    assert MediaResolver(client).resolve(make_safety_event(asset_id=None)) is None
    assert client.safety_calls == []
