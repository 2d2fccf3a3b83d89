"""Map raw telemetry records onto :class:`UnifiedEvent`.

Upstream field names drift between API versions, so every multi-name lookup
goes through :func:`first_non_empty` with an ordered candidate list.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Final

from pydantic import ValidationError

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.models import EventSource, SpeedingInterval, UnifiedEvent
from safety_alerts.domain.relevance_constants import SEVERE_SPEEDING_TYPE

logger = get_logger(__name__)

Accessor = Callable[[Mapping[str, Any]], Any]

# Highest priority first.
VIDEO_URL_FIELDS: Final[tuple[str, ...]] = (
    "downloadForwardVideoUrl",
    "downloadInwardVideoUrl",
    "downloadRearVideoUrl",
    "downloadVideoUrl",
    "mediaUrl",
    "videoUrl",
)
EVENT_TIME_FIELDS: Final[tuple[str, ...]] = ("time", "occurredAt", "startTime")
EVENT_TYPE_FIELDS: Final[tuple[str, ...]] = ("type", "eventType", "behaviorType")
UNKNOWN_TYPE: Final[str] = "unknown"

_WHITESPACE_RE: Final[re.Pattern[str]] = re.compile(r"\s+")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return not value
    return False


def dig(source: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path (``"vehicle.id"``) through nested mappings."""
    current: Any = source
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def first_non_empty(
    source: Mapping[str, Any], candidates: Sequence[str | Accessor]
) -> Any:
    """Return the first candidate value that is present and non-empty.

    Candidates are dotted field paths or callables taking the record.
    """
    for candidate in candidates:
        value = candidate(source) if callable(candidate) else dig(source, candidate)
        if not _is_empty(value):
            return value
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=UTC)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def extract_video_url(record: Mapping[str, Any]) -> str | None:
    """Best video URL on a raw safety record (forward > inward > rear > generic)."""
    value = first_non_empty(record, VIDEO_URL_FIELDS)
    return str(value) if value else None


def record_time(record: Mapping[str, Any]) -> datetime | None:
    return parse_timestamp(first_non_empty(record, EVENT_TIME_FIELDS))


def behavior_label_names(record: Mapping[str, Any]) -> list[str]:
    """Display names of the behavior labels on a safety record."""
    labels = record.get("behaviorLabels")
    if not isinstance(labels, list):
        return []
    names: list[str] = []
    for label in labels:
        if isinstance(label, Mapping):
            name = first_non_empty(label, ("name", "label"))
        else:
            name = label
        if not _is_empty(name):
            names.append(str(name).strip())
    return names


def derive_safety_type(record: Mapping[str, Any]) -> str:
    """Type text: joined label names (lower, whitespace → ``_``) or a type field."""
    names = behavior_label_names(record)
    if names:
        return _WHITESPACE_RE.sub("_", ", ".join(names).lower())
    fallback = first_non_empty(record, EVENT_TYPE_FIELDS)
    if fallback is None:
        return UNKNOWN_TYPE
    return _WHITESPACE_RE.sub("_", str(fallback).strip().lower())


def normalize_safety_event(
    record: Mapping[str, Any], fetched_at: datetime
) -> UnifiedEvent | None:
    """Normalize one raw safety event; ``None`` when it has no id."""
    event_id = record.get("id")
    if _is_empty(event_id):
        logger.warning("safety_event_missing_id", keys=sorted(record.keys())[:10])
        return None

    asset_id = first_non_empty(record, ("vehicle.id", "vehicleId", "asset.id"))
    driver_id = first_non_empty(record, ("driver.id", "driverId"))
    return UnifiedEvent(
        source=EventSource.SAFETY,
        id=str(event_id),
        type=derive_safety_type(record),
        occurred_at=record_time(record) or fetched_at,
        severity=record.get("severity"),
        asset_id=str(asset_id) if asset_id is not None else None,
        vehicle_name=first_non_empty(record, ("vehicle.name", "vehicleName")),
        driver_id=str(driver_id) if driver_id is not None else None,
        details={
            "behavior_labels": record.get("behaviorLabels") or [],
            "location": record.get("location"),
            "max_acceleration_g_force": record.get("maxAccelerationGForce"),
            "coaching_state": record.get("coachingState"),
        },
        video_url=extract_video_url(record),
    )


def speeding_event_id(interval: SpeedingInterval) -> str:
    return f"speeding:{interval.asset_id}:{interval.start_time}:{interval.end_time}"


def normalize_speeding_interval(
    interval: SpeedingInterval, fetched_at: datetime
) -> UnifiedEvent:
    """Normalize one flattened interval; the id is built from verbatim times."""
    occurred_at = parse_timestamp(interval.start_time) or fetched_at
    return UnifiedEvent(
        source=EventSource.SPEEDING_INTERVAL,
        id=speeding_event_id(interval),
        type=SEVERE_SPEEDING_TYPE,
        occurred_at=occurred_at,
        ended_at=parse_timestamp(interval.end_time),
        severity=(interval.severity_level or "SEVERE").upper(),
        asset_id=interval.asset_id,
        driver_id=interval.driver_id,
        details={
            **interval.extra,
            "max_speed_mph": interval.max_speed_mph,
            "speed_limit_mph": interval.speed_limit_mph,
            "over_limit_mph": interval.over_limit_mph,
            "location": interval.location,
        },
        video_url=None,
    )


def normalize_safety_events(
    records: Iterable[Mapping[str, Any]], fetched_at: datetime
) -> list[UnifiedEvent]:
    events: list[UnifiedEvent] = []
    for record in records:
        if not isinstance(record, Mapping):
            logger.warning("safety_event_malformed", record_type=type(record).__name__)
            continue
        try:
            event = normalize_safety_event(record, fetched_at)
        except ValidationError as exc:
            logger.warning(
                "safety_event_malformed",
                event_id=record.get("id"),
                errors=exc.error_count(),
                error=str(exc),
            )
            continue
        if event is not None:
            events.append(event)
    return events


def normalize_speeding_intervals(
    intervals: Iterable[SpeedingInterval], fetched_at: datetime
) -> list[UnifiedEvent]:
    return [normalize_speeding_interval(interval, fetched_at) for interval in intervals]
