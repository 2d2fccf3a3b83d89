"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
import pytz

from safety_alerts.adapters.ledger_factory import create_ledger_store
from safety_alerts.config.settings import Settings
from safety_alerts.domain.exceptions import RepositoryError, TransportError
from safety_alerts.domain.models import (
    DeliveryRecord,
    Destination,
    EventSource,
    ProcessedLogRecord,
    SpeedingPage,
    TimeWindow,
    UnifiedEvent,
)
from safety_alerts.domain.protocols import LedgerStoreProtocol


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings(
        samsara_api_token="samsara-test-token",
        telegram_bot_token="123456:telegram-test-token",
    )

    if request.node.get_closest_marker("postgres"):
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("POSTGRES_PASSWORD"):
            pytest.skip("POSTGRES_PASSWORD not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={"database_type": "sqlite", "db_path": str(db_path)}
    )


@pytest.fixture
def store(settings: Settings) -> Generator[LedgerStoreProtocol, None, None]:
    """Provide a ledger store for the configured backend."""

    ledger_store = create_ledger_store(settings)

    try:
        yield ledger_store
    finally:
        close = getattr(ledger_store, "close", None)
        if callable(close):
            close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            if db_path.exists():
                try:
                    db_path.unlink()
                except OSError:
                    pass


NOW = datetime(2025, 1, 1, 12, 0, tzinfo=pytz.UTC)


def make_safety_event(
    event_id: str = "evt-1",
    *,
    occurred_at: datetime | None = None,
    event_type: str = "harsh_brake",
    video_url: str | None = None,
    asset_id: str | None = "281474976710655",
    vehicle_name: str | None = "Truck 101",
    **kwargs: Any,
) -> UnifiedEvent:
    """Helper to create a normalized safety event."""
    default_details = {"location": {"latitude": 40.7, "longitude": -74.0}}
    details = kwargs.pop("details", default_details)
    return UnifiedEvent(
        source=EventSource.SAFETY,
        id=event_id,
        type=event_type,
        occurred_at=occurred_at or NOW,
        asset_id=asset_id,
        vehicle_name=vehicle_name,
        video_url=video_url,
        details=details,
        **kwargs,
    )


def make_speeding_event(
    asset_id: str = "V1",
    *,
    start: str = "2025-01-01T10:00:00Z",
    end: str = "2025-01-01T10:01:21Z",
    vehicle_name: str | None = "Truck 101",
) -> UnifiedEvent:
    """Helper to create a normalized speeding-interval event."""
    return UnifiedEvent(
        source=EventSource.SPEEDING_INTERVAL,
        id=f"speeding:{asset_id}:{start}:{end}",
        type="severe_speeding",
        occurred_at=datetime.fromisoformat(start.replace("Z", "+00:00")),
        ended_at=datetime.fromisoformat(end.replace("Z", "+00:00")),
        severity="SEVERE",
        asset_id=asset_id,
        vehicle_name=vehicle_name,
        details={
            "max_speed_mph": 82.0,
            "speed_limit_mph": 65.0,
            "over_limit_mph": 17.0,
        },
    )


@pytest.fixture
def destination() -> Destination:
    return Destination(chat_id=-1001234567890, name="Fleet A", mention="@driver101")


class FakeLedgerStore:
    """In-memory ledger store recording every call."""

    def __init__(self) -> None:
        self.delivered: dict[str, DeliveryRecord] = {}
        self.processed: dict[str, ProcessedLogRecord] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_reads = False
        self.fail_writes = False

    def _maybe_fail(self, failing: bool) -> None:
        if failing:
            raise RepositoryError("database is locked")

    def is_delivered(self, event_id: str) -> bool:
        self.calls.append(("is_delivered", event_id))
        self._maybe_fail(self.fail_reads)
        return event_id in self.delivered

    def mark_delivered(self, event_id: str, event_type: str, sent_at: datetime) -> None:
        self.calls.append(("mark_delivered", event_id))
        self._maybe_fail(self.fail_writes)
        self.delivered[event_id] = DeliveryRecord(
            event_id=event_id, event_type=event_type, sent_at=sent_at
        )

    def is_processed(self, event_id: str) -> bool:
        self.calls.append(("is_processed", event_id))
        self._maybe_fail(self.fail_reads)
        return event_id in self.processed

    def log_processed(self, record: ProcessedLogRecord) -> None:
        self.calls.append(("log_processed", record.event_id))
        self._maybe_fail(self.fail_writes)
        self.processed[record.event_id] = record

    def purge_delivered_before(self, cutoff: datetime) -> int:
        self.calls.append(("purge", cutoff.isoformat()))
        self._maybe_fail(self.fail_writes)
        stale = [key for key, row in self.delivered.items() if row.sent_at < cutoff]
        for key in stale:
            del self.delivered[key]
        return len(stale)


@pytest.fixture
def fake_store() -> FakeLedgerStore:
    return FakeLedgerStore()


class RecordingTransport:
    """Message transport stub; queued errors are raised per method in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, Any]] = []
        self.errors: dict[str, list[TransportError]] = {"text": [], "video": []}
        self._next_id = 100

    def _respond(self, kind: str) -> int:
        queued = self.errors[kind]
        if queued:
            raise queued.pop(0)
        self._next_id += 1
        return self._next_id

    def send_text(
        self, chat_id: int, text: str, *, parse_mode: str | None = None
    ) -> int:
        self.calls.append(("text", chat_id, text))
        return self._respond("text")

    def send_video(
        self,
        chat_id: int,
        video: str | Path,
        *,
        caption: str,
        parse_mode: str | None = None,
    ) -> int:
        self.calls.append(("video", chat_id, video))
        return self._respond("video")


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


class StubResolver:
    def __init__(self, url: str | None = None) -> None:
        self.url = url
        self.calls: list[str] = []

    def resolve(self, event: UnifiedEvent) -> str | None:
        self.calls.append(event.id)
        return self.url


class StubDownloader:
    """Downloader stub yielding a real temp file, or raising when told to."""

    def __init__(self, tmp_path: Path, error: Exception | None = None) -> None:
        self.tmp_path = tmp_path
        self.error = error
        self.calls: list[tuple[str, str]] = []

    @contextmanager
    def download(self, url: str, event_id: str) -> Iterator[Path]:
        self.calls.append((url, event_id))
        if self.error is not None:
            raise self.error
        path = self.tmp_path / f"{event_id}.mp4"
        path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        try:
            yield path
        finally:
            path.unlink()


class StubTelemetryClient:
    """Telemetry client stub with canned responses and call recording."""

    def __init__(
        self,
        *,
        safety_events: list[dict[str, Any]] | None = None,
        pages: dict[tuple[str, ...], list[SpeedingPage]] | None = None,
        vehicles: list[dict[str, Any]] | None = None,
    ) -> None:
        self.safety_events = safety_events or []
        self.pages = pages or {}
        self.vehicles = vehicles or []
        self.safety_error: Exception | None = None
        self.page_errors: dict[tuple[str, ...], Exception] = {}
        self.vehicle_error: Exception | None = None
        self.safety_calls: list[tuple[TimeWindow, int, list[str] | None]] = []
        self.page_calls: list[tuple[TimeWindow, tuple[str, ...], str | None]] = []
        self.vehicle_calls = 0

    def fetch_safety_events(
        self,
        window: TimeWindow,
        *,
        limit: int,
        vehicle_ids: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        self.safety_calls.append((window, limit, vehicle_ids))
        if self.safety_error is not None:
            raise self.safety_error
        return list(self.safety_events)

    def fetch_speeding_page(
        self,
        window: TimeWindow,
        asset_ids: list[str],
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> SpeedingPage:
        key = tuple(asset_ids)
        self.page_calls.append((window, key, cursor))
        if key in self.page_errors:
            raise self.page_errors[key]
        pages = self.pages.get(key, [])
        index = int(cursor) if cursor else 0
        return pages[index] if index < len(pages) else SpeedingPage()

    def fetch_vehicles(self) -> list[dict[str, Any]]:
        self.vehicle_calls += 1
        if self.vehicle_error is not None:
            raise self.vehicle_error
        return list(self.vehicles)
