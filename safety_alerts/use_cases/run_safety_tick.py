"""One scheduler tick of the safety alert pipeline.

fetch (safety + speeding) -> normalize -> merge -> filter -> route -> deliver
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import Settings
from safety_alerts.domain.delivery_constants import (
    RETENTION_DAYS_DEFAULT,
    SAFETY_FETCH_LIMIT_DEFAULT,
    SAFETY_LOOKBACK_MINUTES_DEFAULT,
    SPEEDING_BUFFER_MINUTES_DEFAULT,
    SPEEDING_OVER_THRESHOLD_MPH_DEFAULT,
    SPEEDING_WINDOW_HOURS_DEFAULT,
)
from safety_alerts.domain.exceptions import SafetyAlertsError
from safety_alerts.domain.models import (
    DeliveryOutcome,
    EventSource,
    TickResult,
    UnifiedEvent,
)
from safety_alerts.domain.protocols import (
    RoutingStoreProtocol,
    TelemetryClientProtocol,
)
from safety_alerts.observability.metrics import (
    DELIVERY_OUTCOMES_TOTAL,
    EVENTS_FETCHED_TOTAL,
    TICK_DURATION_SECONDS,
)
from safety_alerts.observability.tracing import tick_scope
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.event_merger import merge_and_dedupe
from safety_alerts.services.event_normalizer import (
    normalize_safety_events,
    normalize_speeding_intervals,
)
from safety_alerts.services.relevance_filter import filter_relevant
from safety_alerts.services.vehicle_directory import VehicleDirectory
from safety_alerts.services.window_resolver import lookback_window, sliding_window
from safety_alerts.use_cases.deliver_event import DeliveryOrchestrator
from safety_alerts.use_cases.fetch_speeding_intervals import SpeedingIntervalFetcher

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TickConfig:
    """Window and threshold parameters for a tick."""

    safety_lookback_minutes: int = SAFETY_LOOKBACK_MINUTES_DEFAULT
    safety_fetch_limit: int = SAFETY_FETCH_LIMIT_DEFAULT
    speeding_window_hours: int = SPEEDING_WINDOW_HOURS_DEFAULT
    speeding_buffer_minutes: int = SPEEDING_BUFFER_MINUTES_DEFAULT
    speeding_over_threshold_mph: float = SPEEDING_OVER_THRESHOLD_MPH_DEFAULT
    retention_days: int = RETENTION_DAYS_DEFAULT

    @classmethod
    def from_settings(cls, settings: Settings) -> TickConfig:
        return cls(
            safety_lookback_minutes=settings.safety_lookback_minutes,
            safety_fetch_limit=settings.safety_fetch_limit,
            speeding_window_hours=settings.speeding_window_hours,
            speeding_buffer_minutes=settings.speeding_buffer_minutes,
            speeding_over_threshold_mph=settings.speeding_over_threshold_mph,
            retention_days=settings.retention_days,
        )


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SafetyAlertPipeline:
    """Runs ticks serially; a tick started while another runs is skipped."""

    def __init__(
        self,
        *,
        client: TelemetryClientProtocol,
        directory: VehicleDirectory,
        interval_fetcher: SpeedingIntervalFetcher,
        routing: RoutingStoreProtocol,
        orchestrator: DeliveryOrchestrator,
        ledger: DeliveryLedger,
        config: TickConfig | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._client = client
        self._directory = directory
        self._interval_fetcher = interval_fetcher
        self._routing = routing
        self._orchestrator = orchestrator
        self._ledger = ledger
        self._config = config or TickConfig()
        self._clock = clock
        self._tick_lock = threading.Lock()

    def run_tick(self, now: datetime | None = None) -> TickResult:
        """Run one tick. Never raises; failures are logged and counted."""
        now = now or self._clock()
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("tick_skipped_previous_running")
            return TickResult(started_at=now, skipped=True)

        result = TickResult(started_at=now)
        started = time.perf_counter()
        try:
            with tick_scope():
                try:
                    self._run(now, result)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("tick_failed")
                    result.errors.append(f"tick: {exc}")
                logger.info(
                    "tick_completed",
                    duration_seconds=round(time.perf_counter() - started, 3),
                    **result.model_dump(
                        exclude={"started_at", "errors", "skipped"}
                    ),
                    error_count=len(result.errors),
                )
        finally:
            TICK_DURATION_SECONDS.observe(time.perf_counter() - started)
            self._tick_lock.release()
        return result

    def _fetch_safety(self, now: datetime, result: TickResult) -> list[UnifiedEvent]:
        window = lookback_window(now, self._config.safety_lookback_minutes)
        try:
            records = self._client.fetch_safety_events(
                window, limit=self._config.safety_fetch_limit
            )
        except SafetyAlertsError as exc:
            logger.error("safety_fetch_failed", error=str(exc))
            result.errors.append(f"safety_fetch: {exc}")
            return []

        result.safety_fetched = len(records)
        EVENTS_FETCHED_TOTAL.labels(source=EventSource.SAFETY.value).inc(len(records))
        return normalize_safety_events(records, now)

    def _fetch_speeding(self, now: datetime, result: TickResult) -> list[UnifiedEvent]:
        window = sliding_window(
            now,
            self._config.speeding_window_hours,
            self._config.speeding_buffer_minutes,
        )
        try:
            fetched = self._interval_fetcher.fetch(window)
        except SafetyAlertsError as exc:
            logger.error("speeding_fetch_failed", error=str(exc))
            result.errors.append(f"speeding_fetch: {exc}")
            return []

        result.intervals_fetched = len(fetched.intervals)
        EVENTS_FETCHED_TOTAL.labels(source=EventSource.SPEEDING_INTERVAL.value).inc(
            len(fetched.intervals)
        )
        if fetched.failed_chunks:
            result.errors.append(f"speeding_fetch: {fetched.failed_chunks} chunk(s)")
        selected = fetched.over_threshold(self._config.speeding_over_threshold_mph)
        return normalize_speeding_intervals(selected, now)

    def _vehicle_name(self, event: UnifiedEvent) -> str | None:
        if event.vehicle_name:
            return event.vehicle_name
        if event.asset_id:
            return self._directory.name_for(event.asset_id)
        return None

    def _handle(self, event: UnifiedEvent, now: datetime) -> DeliveryOutcome:
        vehicle_name = self._vehicle_name(event)
        destination = (
            self._routing.find_destination_by_vehicle_name(vehicle_name)
            if vehicle_name
            else None
        )
        return self._orchestrator.handle(
            event, destination, vehicle_name=vehicle_name, now=now
        )

    def _run(self, now: datetime, result: TickResult) -> None:
        safety_events = self._fetch_safety(now, result)
        speeding_events = self._fetch_speeding(now, result)

        merged = merge_and_dedupe(safety_events, speeding_events)
        relevant = filter_relevant(merged)
        result.relevant = len(relevant)
        logger.info(
            "tick_events_selected",
            safety=len(safety_events),
            speeding=len(speeding_events),
            merged=len(merged),
            relevant=len(relevant),
        )

        for event in relevant:
            try:
                outcome = self._handle(event, now)
            except Exception as exc:  # noqa: BLE001
                logger.exception("event_handling_failed", event_id=event.id)
                result.errors.append(f"{event.id}: {exc}")
                continue
            result.record(outcome)
            DELIVERY_OUTCOMES_TOTAL.labels(
                source=event.source.value,
                status=outcome.status.value,
                method=outcome.method.value,
            ).inc()

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete ledger rows older than the retention horizon."""
        return self._ledger.purge(now or self._clock(), self._config.retention_days)
