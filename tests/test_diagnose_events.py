from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from safety_alerts.domain.exceptions import TelemetryAPIError
from safety_alerts.domain.models import SpeedingPage
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.vehicle_directory import VehicleDirectory
from safety_alerts.use_cases.diagnose_events import (
    DiagnosticsReport,
    clamp_hours,
    diagnose_events,
    format_report,
)
from safety_alerts.use_cases.fetch_speeding_intervals import SpeedingIntervalFetcher
from tests.conftest import NOW, FakeLedgerStore, StubTelemetryClient

SEVERE_ID = "speeding:V1:2025-01-01T10:00:00Z:2025-01-01T10:01:21Z"


def _client(pages: list[SpeedingPage] | None = None) -> StubTelemetryClient:
    if pages is None:
        pages = [
            SpeedingPage(
                records=[
                    {
                        "asset": {"id": "V1"},
                        "intervals": [
                            {
                                "startTime": "2025-01-01T10:00:00Z",
                                "endTime": "2025-01-01T10:01:21Z",
                                "severityLevel": "severe",
                                "maxSpeedMph": 82.0,
                                "speedLimitMph": 65.0,
                                "driverId": "D-7",
                            },
                            {
                                "startTime": "2025-01-01T09:00:00Z",
                                "endTime": "2025-01-01T09:02:00Z",
                                "severityLevel": "moderate",
                                "maxSpeedMph": 85.0,
                                "speedLimitMph": 65.0,
                            },
                        ],
                    }
                ]
            )
        ]
    return StubTelemetryClient(
        safety_events=[
            {"id": "evt-1", "time": "2025-01-01T11:00:00Z", "type": "harsh_brake"},
            {"id": "evt-2", "time": "2025-01-01T11:10:00Z", "type": "harsh_brake"},
            {"time": "2025-01-01T11:20:00Z", "type": "missing id"},
        ],
        pages={("V1", "V2"): pages},
    )


def _diagnose(
    client: StubTelemetryClient, store: FakeLedgerStore, **kwargs: Any
) -> DiagnosticsReport:
    directory = VehicleDirectory(client, override_ids=["V1", "V2"])
    return diagnose_events(
        client=client,
        directory=directory,
        interval_fetcher=SpeedingIntervalFetcher(client, directory),
        ledger=DeliveryLedger(store),
        now=NOW,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("requested", "expected"), [(0, 1), (0.4, 1), (10, 10), (12.6, 13), (100, 48)]
)
def test_clamp_hours(requested: float, expected: int) -> None:
    assert clamp_hours(requested) == expected


def test_report_counts(fake_store: FakeLedgerStore) -> None:
    fake_store.mark_delivered(SEVERE_ID, "severe_speeding", NOW)
    client = _client()

    report = _diagnose(client, fake_store, hours=10)

    assert report.hours == 10
    assert report.safety_window.start == NOW - timedelta(hours=10)
    assert report.speeding_window_hours == 10
    assert report.discovery_mode == "override"
    assert report.vehicle_count == 2
    assert report.safety_raw == 3
    assert report.safety_normalized == 2
    assert report.intervals_total == 2
    assert report.intervals_upstream_severe == 1
    assert report.intervals_over_threshold == 2
    assert report.not_yet_delivered == 1
    assert report.expansion_attempts == 1
    assert dict(report.top_types) == {"severe_speeding": 2, "harsh_brake": 2}
    assert report.example_interval is not None
    assert report.example_interval.driver_id == "D-7"
    # Read-only: nothing was delivered or logged.
    assert fake_store.processed == {}
    assert list(fake_store.delivered) == [SEVERE_ID]


def test_empty_window_is_widened(fake_store: FakeLedgerStore) -> None:
    client = _client(pages=[])

    report = _diagnose(client, fake_store, hours=2, expansion_hours=(2, 6))

    assert report.speeding_window_hours == 6
    assert report.expansion_attempts == 3
    assert len(client.page_calls) == 3
    assert report.speeding_window.start == NOW - timedelta(hours=12, minutes=10)
    assert report.speeding_window.end == NOW + timedelta(hours=6, minutes=1)
    assert report.example_interval is None


def test_safety_failure_is_reported(fake_store: FakeLedgerStore) -> None:
    client = _client()
    client.safety_error = TelemetryAPIError("upstream 502", status_code=502)

    report = _diagnose(client, fake_store)

    assert report.hours == 10
    assert report.safety_raw == 0
    assert report.intervals_total == 2
    assert report.errors == ["safety_fetch: upstream 502"]


def test_format_report(fake_store: FakeLedgerStore) -> None:
    client = _client()
    client.safety_error = TelemetryAPIError("upstream 502", status_code=502)

    text = format_report(_diagnose(client, fake_store, hours=10))

    assert text.startswith("Safety Events Diagnostics")
    assert "Vehicles count: 2 (mode: override)" in text
    assert "Speeding intervals (over threshold): 2" in text
    assert "Speeding intervals (new to post): 2" in text
    assert "  - severe_speeding: 2" in text
    assert f"ID: {SEVERE_ID}" in text
    assert "Max speed: 82.0 mph" in text
    assert "Driver ID: D-7" in text
    assert "  - safety_fetch: upstream 502" in text


def test_format_report_without_example(fake_store: FakeLedgerStore) -> None:
    text = format_report(_diagnose(_client(pages=[]), fake_store, hours=1))

    assert "Example severe speeding interval: None found" in text
    assert "Errors:" not in text
