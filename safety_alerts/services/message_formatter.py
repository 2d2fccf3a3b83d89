"""Alert message text (Telegram legacy Markdown)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Final
from urllib.parse import urlsplit

import pytz
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

from safety_alerts.domain.models import UnifiedEvent
from safety_alerts.services.event_normalizer import behavior_label_names

MESSAGE_PARSE_MODE: Final[str] = ParseMode.MARKDOWN
UNKNOWN_VEHICLE: Final[str] = "Unknown"
MASKED_URL_FALLBACK_LENGTH: Final[int] = 50


def _md(value: Any) -> str:
    return escape_markdown(str(value), version=1)


def format_local_time(value: datetime, tz_name: str) -> str:
    """Format ``value`` as ``MM/DD/YYYY, HH:MM:SS AM`` in ``tz_name``.

    Example:
        >>> afternoon = datetime(2025, 1, 1, 15, 0, tzinfo=pytz.UTC)
        >>> format_local_time(afternoon, "America/New_York")
        '01/01/2025, 10:00:00 AM'
    """
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return value.strftime("%m/%d/%Y, %I:%M:%S %p UTC")
    return value.astimezone(tz).strftime("%m/%d/%Y, %I:%M:%S %p")


def format_duration(start: datetime, end: datetime | None) -> str | None:
    if end is None or end < start:
        return None
    total_seconds = int((end - start).total_seconds())
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def mask_video_url(url: str) -> str:
    """Strip the query string (signed credentials) before logging a media URL."""
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}{parts.path}..."
    return f"{url[:MASKED_URL_FALLBACK_LENGTH]}..."


def location_of(event: UnifiedEvent) -> tuple[float, float] | None:
    location = event.details.get("location")
    if not isinstance(location, dict):
        return None
    latitude = location.get("latitude")
    longitude = location.get("longitude")
    if latitude is None or longitude is None:
        return None
    try:
        return float(latitude), float(longitude)
    except (TypeError, ValueError):
        return None


def behavior_text(event: UnifiedEvent) -> str:
    """Human label list for a safety event, falling back to its type."""
    names = behavior_label_names(
        {"behaviorLabels": event.details.get("behavior_labels") or []}
    )
    if names:
        return ", ".join(names)
    return event.type.replace("_", " ").strip() or "Unknown"


def _location_lines(event: UnifiedEvent) -> str:
    coords = location_of(event)
    if coords is None:
        return ""
    latitude, longitude = coords
    return (
        f"\n*Location:* {latitude:.5f}, {longitude:.5f}"
        f"\nhttps://www.google.com/maps?q={latitude},{longitude}"
    )


def _with_mention(text: str, mention: str | None) -> str:
    return f"{mention}\n\n{text}" if mention else text


def format_safety_caption(
    event: UnifiedEvent,
    *,
    vehicle_name: str | None,
    tz_name: str,
    mention: str | None = None,
) -> str:
    """Caption for a discrete safety event (also used for the text fallback)."""
    caption = (
        "⚠️ *Safety Warning*\n"
        f"*Truck:* {_md(vehicle_name or UNKNOWN_VEHICLE)}\n"
        f"*Behavior:* {_md(behavior_text(event))}\n"
        f"*Time:* {format_local_time(event.occurred_at, tz_name)}"
    )
    return _with_mention(caption + _location_lines(event), mention)


def format_speeding_message(
    event: UnifiedEvent,
    *,
    vehicle_name: str | None,
    tz_name: str,
    mention: str | None = None,
) -> str:
    """Text message for a severe speeding interval."""
    details = event.details
    lines = [
        "🚨 *Severe Speeding*",
        f"*Truck:* {_md(vehicle_name or UNKNOWN_VEHICLE)}",
    ]

    max_speed = details.get("max_speed_mph")
    limit = details.get("speed_limit_mph")
    if max_speed is not None and limit is not None:
        over = details.get("over_limit_mph")
        over_text = f" (+{over:.1f} mph)" if over is not None else ""
        lines.append(
            f"*Speed:* {max_speed:.1f} mph in a {limit:.1f} mph zone{over_text}"
        )
    elif max_speed is not None:
        lines.append(f"*Max speed:* {max_speed:.1f} mph")

    lines.append(f"*Start:* {format_local_time(event.occurred_at, tz_name)}")
    if event.ended_at is not None:
        lines.append(f"*End:* {format_local_time(event.ended_at, tz_name)}")
    duration = format_duration(event.occurred_at, event.ended_at)
    if duration:
        lines.append(f"*Duration:* {duration}")

    return _with_mention("\n".join(lines) + _location_lines(event), mention)
