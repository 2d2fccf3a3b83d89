"""Merge normalized event batches into one ordered, duplicate-free list."""

from collections.abc import Iterable

from safety_alerts.domain.models import UnifiedEvent


def merge_and_dedupe(*batches: Iterable[UnifiedEvent]) -> list[UnifiedEvent]:
    """Keep the first occurrence of each id and sort ascending by occurrence time.

    The sort is stable, so events sharing a timestamp keep their input order.
    """
    seen: set[str] = set()
    merged: list[UnifiedEvent] = []
    for batch in batches:
        for event in batch:
            if event.id in seen:
                continue
            seen.add(event.id)
            merged.append(event)

    merged.sort(key=lambda event: event.occurred_at)
    return merged
