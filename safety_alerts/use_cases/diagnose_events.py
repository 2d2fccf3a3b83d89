"""Read-only diagnostics over the telemetry feeds.

Fetches both feeds for the last N hours and reports what the pipeline would
see. Nothing is sent and nothing is written to the ledger.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Final

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.delivery_constants import (
    SPEEDING_BUFFER_MINUTES_DEFAULT,
    SPEEDING_EXPANSION_HOURS_DEFAULT,
    SPEEDING_OVER_THRESHOLD_MPH_DEFAULT,
    SPEEDING_WINDOW_HOURS_DEFAULT,
)
from safety_alerts.domain.exceptions import SafetyAlertsError
from safety_alerts.domain.models import (
    IntervalFetchResult,
    SpeedingInterval,
    TimeWindow,
)
from safety_alerts.domain.protocols import TelemetryClientProtocol
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.event_merger import merge_and_dedupe
from safety_alerts.services.event_normalizer import (
    normalize_safety_events,
    normalize_speeding_intervals,
    speeding_event_id,
)
from safety_alerts.services.vehicle_directory import VehicleDirectory
from safety_alerts.services.window_resolver import expanding_search, sliding_window
from safety_alerts.use_cases.fetch_speeding_intervals import SpeedingIntervalFetcher

logger = get_logger(__name__)

MIN_HOURS: Final[int] = 1
MAX_HOURS: Final[int] = 48
DEFAULT_HOURS: Final[int] = 10
DIAGNOSTIC_SAFETY_LIMIT: Final[int] = 200
TOP_TYPES: Final[int] = 5


def clamp_hours(hours: float) -> int:
    """Round and clamp the requested lookback to ``[1, 48]`` hours."""
    return max(MIN_HOURS, min(MAX_HOURS, round(hours)))


@dataclass
class DiagnosticsReport:
    """Snapshot of both feeds for a lookback period."""

    hours: int
    safety_window: TimeWindow
    speeding_window: TimeWindow
    speeding_window_hours: int
    buffer_minutes: int
    vehicle_count: int
    discovery_mode: str
    safety_raw: int = 0
    safety_normalized: int = 0
    intervals_total: int = 0
    intervals_upstream_severe: int = 0
    intervals_over_threshold: int = 0
    not_yet_delivered: int = 0
    expansion_attempts: int = 1
    top_types: list[tuple[str, int]] = field(default_factory=list)
    example_interval: SpeedingInterval | None = None
    errors: list[str] = field(default_factory=list)


def diagnose_events(
    *,
    client: TelemetryClientProtocol,
    directory: VehicleDirectory,
    interval_fetcher: SpeedingIntervalFetcher,
    ledger: DeliveryLedger,
    hours: float = DEFAULT_HOURS,
    now: datetime | None = None,
    speeding_window_hours: int = SPEEDING_WINDOW_HOURS_DEFAULT,
    buffer_minutes: int = SPEEDING_BUFFER_MINUTES_DEFAULT,
    over_threshold_mph: float = SPEEDING_OVER_THRESHOLD_MPH_DEFAULT,
    expansion_hours: Sequence[int] = SPEEDING_EXPANSION_HOURS_DEFAULT,
    safety_limit: int = DIAGNOSTIC_SAFETY_LIMIT,
) -> DiagnosticsReport:
    """Collect counts for the last ``hours`` hours without side effects.

    The speeding window is ``max(hours, speeding_window_hours)`` plus the
    buffer, widened step by step when it comes back empty.
    """
    now = now or datetime.now(UTC)
    hours = clamp_hours(hours)
    speeding_hours = max(hours, speeding_window_hours)
    safety_window = TimeWindow(start=now - timedelta(hours=hours), end=now)
    base_window = sliding_window(now, speeding_hours, buffer_minutes)

    asset_ids = directory.asset_ids()
    report = DiagnosticsReport(
        hours=hours,
        safety_window=safety_window,
        speeding_window=base_window,
        speeding_window_hours=speeding_hours,
        buffer_minutes=buffer_minutes,
        vehicle_count=len(asset_ids),
        discovery_mode="override" if directory.uses_override else "live",
    )

    try:
        records = client.fetch_safety_events(safety_window, limit=safety_limit)
    except SafetyAlertsError as exc:
        logger.error("diagnostics_safety_fetch_failed", error=str(exc))
        report.errors.append(f"safety_fetch: {exc}")
        records = []
    safety_events = normalize_safety_events(records, now)
    report.safety_raw = len(records)
    report.safety_normalized = len(safety_events)

    expansion = expanding_search(
        base_window,
        lambda window: interval_fetcher.fetch(window, asset_ids).intervals,
        [timedelta(hours=value) for value in expansion_hours],
    )
    fetched = IntervalFetchResult(intervals=expansion.records)
    report.speeding_window = expansion.window
    report.expansion_attempts = len(expansion.attempts)

    selected = fetched.over_threshold(over_threshold_mph)
    severe = fetched.severe()
    report.intervals_total = len(fetched.intervals)
    report.intervals_upstream_severe = len(severe)
    report.intervals_over_threshold = len(selected)

    speeding_events = normalize_speeding_intervals(selected, now)
    report.not_yet_delivered = sum(
        1 for event in speeding_events if not ledger.already_handled(event)
    )

    merged = merge_and_dedupe(safety_events, speeding_events)
    report.top_types = Counter(event.type for event in merged).most_common(TOP_TYPES)
    examples = severe or selected
    report.example_interval = examples[0] if examples else None

    logger.info(
        "diagnostics_collected",
        hours=hours,
        safety_raw=report.safety_raw,
        intervals_total=report.intervals_total,
        intervals_over_threshold=report.intervals_over_threshold,
        not_yet_delivered=report.not_yet_delivered,
    )
    return report


def _speed(value: float | None) -> str:
    return f"{value} mph" if value is not None else "N/A"


def format_report(report: DiagnosticsReport) -> str:
    """Render the report as plain text."""
    lines = [
        "Safety Events Diagnostics",
        "",
        "Windows:",
        f"  Safety window: last {report.hours} hours "
        f"({report.safety_window.start.isoformat()} to "
        f"{report.safety_window.end.isoformat()})",
        f"  Speeding window: {report.speeding_window_hours}h + "
        f"{report.buffer_minutes}m buffer "
        f"({report.speeding_window.start.isoformat()} to "
        f"{report.speeding_window.end.isoformat()}, "
        f"{report.expansion_attempts} attempt(s))",
        "",
        f"Vehicles count: {report.vehicle_count} (mode: {report.discovery_mode})",
        f"Safety events (raw): {report.safety_raw}",
        f"Safety events (normalized): {report.safety_normalized}",
        f"Speeding intervals (total): {report.intervals_total}",
        f"Speeding intervals (upstream severe): {report.intervals_upstream_severe}",
        f"Speeding intervals (over threshold): {report.intervals_over_threshold}",
        f"Speeding intervals (new to post): {report.not_yet_delivered}",
        "",
    ]

    if report.top_types:
        lines.append("Top event types (merged):")
        lines.extend(f"  - {name}: {count}" for name, count in report.top_types)
        lines.append("")

    interval = report.example_interval
    if interval is None:
        lines.append("Example severe speeding interval: None found")
    else:
        lines.extend(
            [
                "Example severe speeding interval:",
                f"ID: {speeding_event_id(interval)}",
                f"Asset ID: {interval.asset_id}",
                f"Start time: {interval.start_time}",
                f"End time: {interval.end_time}",
                f"Severity: {(interval.severity_level or 'SEVERE').upper()}",
                f"Max speed: {_speed(interval.max_speed_mph)}",
                f"Speed limit: {_speed(interval.speed_limit_mph)}",
                f"Driver ID: {interval.driver_id or 'N/A'}",
            ]
        )

    if report.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {error}" for error in report.errors)

    return "\n".join(lines)
