"""Late lookup of a safety event's video URL.

Camera footage is usually attached to a safety event a few minutes after the
event itself is published, so the URL is re-queried just before delivery.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Final

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.delivery_constants import (
    MEDIA_LOOKUP_LIMIT,
    MEDIA_LOOKUP_WINDOW_MINUTES_DEFAULT,
)
from safety_alerts.domain.exceptions import SafetyAlertsError
from safety_alerts.domain.models import TimeWindow, UnifiedEvent
from safety_alerts.domain.protocols import TelemetryClientProtocol
from safety_alerts.services.event_normalizer import extract_video_url, record_time
from safety_alerts.services.message_formatter import mask_video_url

logger = get_logger(__name__)

_FAR_AWAY: Final[float] = float("inf")


class MediaResolver:
    """Find the best video URL for an event by re-querying nearby safety events."""

    def __init__(
        self,
        client: TelemetryClientProtocol,
        *,
        window_minutes: int = MEDIA_LOOKUP_WINDOW_MINUTES_DEFAULT,
        limit: int = MEDIA_LOOKUP_LIMIT,
    ) -> None:
        self._client = client
        self._window = timedelta(minutes=window_minutes)
        self._limit = limit

    def _pick_match(
        self, event: UnifiedEvent, records: list[dict[str, Any]]
    ) -> dict[str, Any] | None:
        for record in records:
            if str(record.get("id")) == event.id:
                return record

        best: dict[str, Any] | None = None
        best_distance = _FAR_AWAY
        for record in records:
            occurred = record_time(record)
            if occurred is None:
                continue
            distance = abs((occurred - event.occurred_at).total_seconds())
            if distance < best_distance:
                best, best_distance = record, distance
        return best

    def resolve(self, event: UnifiedEvent) -> str | None:
        """Return a video URL or ``None``; lookup failures never propagate."""
        if not event.asset_id:
            return None

        window = TimeWindow(
            start=event.occurred_at - self._window,
            end=event.occurred_at + self._window,
        )
        try:
            records = self._client.fetch_safety_events(
                window, limit=self._limit, vehicle_ids=[event.asset_id]
            )
        except SafetyAlertsError as exc:
            logger.warning("media_lookup_failed", event_id=event.id, error=str(exc))
            return None

        match = self._pick_match(event, records)
        if match is None:
            logger.info(
                "media_lookup_no_match", event_id=event.id, candidates=len(records)
            )
            return None

        url = extract_video_url(match)
        if url:
            logger.info(
                "media_lookup_resolved",
                event_id=event.id,
                matched_id=match.get("id"),
                masked_url=mask_video_url(url),
            )
        return url
