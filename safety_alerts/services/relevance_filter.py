"""Keyword-based relevance predicate for normalized events."""

import re
from collections.abc import Iterable
from typing import Final

from safety_alerts.domain.models import EventSource, UnifiedEvent
from safety_alerts.domain.relevance_constants import (
    ALLOWED_KEYWORDS,
    BLOCKED_KEYWORDS,
    SEVERE_SPEEDING_TYPE,
)

_COMPACT_RE: Final[re.Pattern[str]] = re.compile(r"[\s_]+")


def compact(text: str) -> str:
    """Lower-case and drop whitespace and underscores."""
    return _COMPACT_RE.sub("", text.lower())


def _label_text(event: UnifiedEvent) -> str:
    labels = event.details.get("behavior_labels") or []
    parts: list[str] = []
    for label in labels:
        if isinstance(label, dict):
            parts.extend(
                str(label[key]) for key in ("label", "name") if label.get(key)
            )
        elif label:
            parts.append(str(label))
    return " ".join(parts)


def _matches(text: str, compact_text: str, keywords: Iterable[str]) -> bool:
    for keyword in keywords:
        if keyword in text or compact(keyword) in compact_text:
            return True
    return False


def is_relevant(event: UnifiedEvent) -> bool:
    """True when the event should be delivered.

    Severe-speeding intervals always pass. Otherwise blocked keywords win
    over allowed ones; both are checked literally and in compacted form.
    """
    if (
        event.source is EventSource.SPEEDING_INTERVAL
        and event.type == SEVERE_SPEEDING_TYPE
    ):
        return True

    text = f"{event.type} {_label_text(event)}".lower()
    compact_text = compact(text)

    if _matches(text, compact_text, BLOCKED_KEYWORDS):
        return False
    return _matches(text, compact_text, ALLOWED_KEYWORDS)


def filter_relevant(events: Iterable[UnifiedEvent]) -> list[UnifiedEvent]:
    return [event for event in events if is_relevant(event)]
