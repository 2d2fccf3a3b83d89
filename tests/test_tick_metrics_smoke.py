from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from structlog.testing import capture_logs

from safety_alerts.adapters.config_routing_store import ConfigRoutingStore
from safety_alerts.domain.models import RouteConfig
from safety_alerts.observability.metrics import (
    DELIVERY_OUTCOMES_TOTAL,
    TICK_DURATION_SECONDS,
)
from safety_alerts.observability.tracing import TICK_ID_KEY
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.vehicle_directory import VehicleDirectory
from safety_alerts.use_cases.deliver_event import DeliveryOrchestrator
from safety_alerts.use_cases.fetch_speeding_intervals import SpeedingIntervalFetcher
from safety_alerts.use_cases.run_safety_tick import SafetyAlertPipeline
from tests.conftest import (
    NOW,
    FakeLedgerStore,
    RecordingTransport,
    StubDownloader,
    StubResolver,
    StubTelemetryClient,
)

ROUTE = RouteConfig(chat_id=-100123, chat_name="Truck 101", vehicles=["Truck 101"])


class ContextRecordingTransport(RecordingTransport):
    def __init__(self) -> None:
        super().__init__()
        self.contexts: list[dict[str, Any]] = []

    def send_video(self, chat_id: int, video: Any, **kwargs: Any) -> int:
        self.contexts.append(structlog.contextvars.get_contextvars())
        return super().send_video(chat_id, video, **kwargs)


def test_tick_emits_tick_id_and_metrics(
    fake_store: FakeLedgerStore, tmp_path: Path
) -> None:
    ticks_before = _sample("safety_alerts_tick_duration_seconds_count")
    delivered_before = _delivered_video_count()

    client = StubTelemetryClient(
        safety_events=[
            {
                "id": "evt-metrics",
                "time": "2025-01-01T11:50:00Z",
                "vehicle": {"id": "V1", "name": "Truck 101"},
                "type": "harsh_brake",
                "downloadForwardVideoUrl": "https://media.example.com/a.mp4",
            }
        ],
    )
    directory = VehicleDirectory(client, override_ids=["V1"])
    ledger = DeliveryLedger(fake_store)
    transport = ContextRecordingTransport()
    pipeline = SafetyAlertPipeline(
        client=client,
        directory=directory,
        interval_fetcher=SpeedingIntervalFetcher(client, directory),
        routing=ConfigRoutingStore([ROUTE]),
        orchestrator=DeliveryOrchestrator(
            transport, ledger, StubResolver(), StubDownloader(tmp_path)
        ),
        ledger=ledger,
    )

    with capture_logs() as logs:
        result = pipeline.run_tick(NOW)

    assert result.delivered == 1
    assert transport.contexts[0].get(TICK_ID_KEY)
    assert TICK_ID_KEY not in structlog.contextvars.get_contextvars()
    assert any(log["event"] == "tick_completed" for log in logs)

    assert _sample("safety_alerts_tick_duration_seconds_count") == ticks_before + 1
    assert _delivered_video_count() == delivered_before + 1


def _sample(name: str) -> float:
    for metric in TICK_DURATION_SECONDS.collect():
        for sample in metric.samples:
            if sample.name == name:
                return sample.value
    return 0.0


def _delivered_video_count() -> float:
    wanted = {"source": "safety", "status": "delivered", "method": "video_url"}
    for metric in DELIVERY_OUTCOMES_TOTAL.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total") and sample.labels == wanted:
                return sample.value
    return 0.0
