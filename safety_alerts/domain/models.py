"""Domain models for the safety alert pipeline.

All models use Pydantic v2 for validation and serialization.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EventSource(str, Enum):
    """Upstream feed an event came from."""

    SAFETY = "safety"
    SPEEDING_INTERVAL = "speeding_interval"


class DeliveryStatus(str, Enum):
    """Terminal (or deferring) result of handling one event in a tick."""

    DELIVERED = "delivered"
    DEFERRED = "deferred"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    NO_DESTINATION = "no_destination"
    DRY_RUN = "dry_run"


class DeliveryMethod(str, Enum):
    """How the message that reached the chat was sent."""

    VIDEO_URL = "video_url"
    VIDEO_UPLOAD = "video_upload"
    TEXT = "text"
    NONE = "none"


class UnifiedEvent(BaseModel):
    """Single event shape shared by discrete safety events and speeding intervals."""

    source: EventSource = Field(..., description="Feed the event came from")
    id: str = Field(..., description="Stable identity key used by the ledger")
    type: str = Field(..., description="Normalized behavior type text")
    occurred_at: datetime = Field(
        ..., description="Event (or interval start) time, UTC"
    )
    ended_at: datetime | None = Field(
        default=None, description="Interval end time, UTC (speeding only)"
    )
    severity: str | None = Field(default=None, description="Upstream severity tag")
    asset_id: str | None = Field(default=None, description="Vehicle/asset identifier")
    vehicle_name: str | None = Field(default=None, description="Vehicle display name")
    driver_id: str | None = Field(default=None, description="Driver identifier")
    details: dict[str, Any] = Field(
        default_factory=dict, description="Source-specific extras"
    )
    video_url: str | None = Field(default=None, description="Best known video URL")

    @field_validator("occurred_at", "ended_at")
    @classmethod
    def _normalize_timezone(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    def age(self, now: datetime) -> timedelta:
        """Elapsed time between the event and ``now``."""
        return now - self.occurred_at


class SpeedingInterval(BaseModel):
    """One flattened speeding interval with speeds already in mph."""

    asset_id: str = Field(..., description="Vehicle/asset identifier")
    start_time: str = Field(..., description="Upstream interval start (verbatim ISO)")
    end_time: str = Field(..., description="Upstream interval end (verbatim ISO)")
    severity_level: str | None = Field(
        default=None, description="Upstream severity tag (light/moderate/heavy/severe)"
    )
    max_speed_mph: float | None = Field(default=None, description="Peak speed (mph)")
    speed_limit_mph: float | None = Field(
        default=None, description="Posted speed limit (mph)"
    )
    driver_id: str | None = Field(default=None, description="Driver identifier")
    location: dict[str, Any] | None = Field(
        default=None, description="Location payload as reported upstream"
    )
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Remaining upstream fields"
    )

    @property
    def over_limit_mph(self) -> float | None:
        if self.max_speed_mph is None or self.speed_limit_mph is None:
            return None
        return round(self.max_speed_mph - self.speed_limit_mph, 1)

    @property
    def is_upstream_severe(self) -> bool:
        return (self.severity_level or "").strip().lower() == "severe"


class TimeWindow(BaseModel):
    """Closed query window ``[start, end]`` in UTC."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]

    def widen(self, delta: timedelta) -> "TimeWindow":
        """Return a window extended symmetrically by ``delta`` on both sides."""
        return TimeWindow(start=self.start - delta, end=self.end + delta)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class SpeedingPage(BaseModel):
    """One page of the speeding-interval stream."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None


class IntervalFetchResult(BaseModel):
    """Flattened intervals for a window plus chunk bookkeeping."""

    intervals: list[SpeedingInterval] = Field(default_factory=list)
    pages: int = Field(default=0, description="Upstream pages consumed")
    chunks: int = Field(default=0, description="Asset-id chunks queried")
    failed_chunks: int = Field(default=0, description="Chunks that errored out")

    def severe(self) -> list[SpeedingInterval]:
        """Intervals the upstream tagged as severe."""
        return [interval for interval in self.intervals if interval.is_upstream_severe]

    def over_threshold(self, threshold_mph: float) -> list[SpeedingInterval]:
        """Intervals whose max speed exceeds the limit by at least ``threshold_mph``."""
        selected: list[SpeedingInterval] = []
        for interval in self.intervals:
            over = interval.over_limit_mph
            if over is not None and over >= threshold_mph:
                selected.append(interval)
        return selected


class VehicleInfo(BaseModel):
    """Vehicle roster entry."""

    id: str = Field(..., description="Vehicle/asset identifier")
    name: str | None = Field(default=None, description="Vehicle display name")


class RouteConfig(BaseModel):
    """Routing table entry (loaded from config/routes.yaml)."""

    chat_id: int = Field(..., description="Destination chat identifier")
    chat_name: str = Field(..., description="Human-readable chat name")
    vehicles: list[str] = Field(
        default_factory=list, description="Vehicle display names routed to this chat"
    )
    driver_username: str | None = Field(
        default=None, description="Driver chat username (without @)"
    )
    driver_user_id: int | None = Field(default=None, description="Driver chat user id")
    mention_template: str | None = Field(
        default=None, description="Explicit mention text, overrides driver fields"
    )
    language: str = Field(default="en", description="Chat language")
    enabled: bool = Field(default=True, description="Whether the route is active")


class Destination(BaseModel):
    """Resolved delivery target for one vehicle."""

    chat_id: int = Field(..., description="Destination chat identifier")
    name: str = Field(..., description="Human-readable chat name")
    mention: str | None = Field(default=None, description="Driver mention prefix")
    language: str = Field(default="en", description="Chat language")


class DeliveryRecord(BaseModel):
    """Delivery ledger row: the event id was successfully sent."""

    event_id: str
    event_type: str
    sent_at: datetime

    @field_validator("sent_at")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]


class ProcessedLogRecord(BaseModel):
    """Audit row for an event the pipeline reached a terminal decision on."""

    event_id: str
    source: EventSource
    event_type: str
    vehicle_name: str | None = None
    behavior: str | None = None
    occurred_at: datetime
    latitude: float | None = None
    longitude: float | None = None
    sent_to_chat_id: int | None = None
    video_url: str | None = None
    delivery_method: DeliveryMethod = DeliveryMethod.NONE
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]


class DeliveryOutcome(BaseModel):
    """What happened to one event in one tick."""

    event_id: str
    status: DeliveryStatus
    method: DeliveryMethod = DeliveryMethod.NONE
    chat_id: int | None = None
    video_url: str | None = None
    reason: str | None = Field(
        default=None, description="Deferral reason or final error description"
    )
    attempts: list[DeliveryMethod] = Field(
        default_factory=list, description="Send methods tried, in order"
    )


class TickResult(BaseModel):
    """Counters for one scheduler tick."""

    started_at: datetime
    safety_fetched: int = 0
    intervals_fetched: int = 0
    relevant: int = 0
    delivered: int = 0
    deferred: int = 0
    failed: int = 0
    duplicates: int = 0
    no_destination: int = 0
    dry_run: int = 0
    errors: list[str] = Field(default_factory=list)
    skipped: bool = Field(default=False, description="Tick skipped (still running)")

    def record(self, outcome: DeliveryOutcome) -> None:
        counters = {
            DeliveryStatus.DELIVERED: "delivered",
            DeliveryStatus.DEFERRED: "deferred",
            DeliveryStatus.FAILED: "failed",
            DeliveryStatus.DUPLICATE: "duplicates",
            DeliveryStatus.NO_DESTINATION: "no_destination",
            DeliveryStatus.DRY_RUN: "dry_run",
        }
        field_name = counters[outcome.status]
        setattr(self, field_name, getattr(self, field_name) + 1)


class ReminderResult(BaseModel):
    """Counters for one reminder broadcast."""

    started_at: datetime
    sent: int = 0
    failed: int = 0
    dry_run: int = 0
    errors: list[str] = Field(default_factory=list)
