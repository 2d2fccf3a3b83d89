"""Query-window computation for the telemetry fetches."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final, Generic, TypeVar

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.models import TimeWindow

T = TypeVar("T")

logger = get_logger(__name__)

# Forward slack so records stamped slightly in the future are not missed.
WINDOW_END_SLACK: Final[timedelta] = timedelta(minutes=1)
DEFAULT_EXPANSION_DELTAS: Final[tuple[timedelta, ...]] = (
    timedelta(hours=2),
    timedelta(hours=6),
    timedelta(hours=12),
)


def sliding_window(now: datetime, window_hours: int, buffer_minutes: int) -> TimeWindow:
    """``[now - (window_hours*60 + buffer_minutes) min, now + 1 min]``."""
    lookback = timedelta(minutes=window_hours * 60 + buffer_minutes)
    return TimeWindow(start=now - lookback, end=now + WINDOW_END_SLACK)


def lookback_window(now: datetime, lookback_minutes: int) -> TimeWindow:
    """``[now - lookback_minutes, now]`` for the discrete-event fetch."""
    return TimeWindow(start=now - timedelta(minutes=lookback_minutes), end=now)


@dataclass
class ExpansionResult(Generic[T]):
    """Outcome of an expanding search."""

    window: TimeWindow
    records: list[T]
    attempts: list[TimeWindow] = field(default_factory=list)


def expanding_search(
    base: TimeWindow,
    fetch: Callable[[TimeWindow], list[T]],
    deltas: Sequence[timedelta] = DEFAULT_EXPANSION_DELTAS,
) -> ExpansionResult[T]:
    """Query ``base``, then symmetric widenings of it until something is found.

    Stops at the first non-empty result; after the last delta the (empty)
    widest window is returned.
    """
    attempts: list[TimeWindow] = [base]
    records = fetch(base)
    window = base
    for delta in deltas:
        if records:
            break
        window = base.widen(delta)
        attempts.append(window)
        logger.debug(
            "window_expanded",
            delta_hours=delta.total_seconds() / 3600,
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
        )
        records = fetch(window)

    return ExpansionResult(window=window, records=records, attempts=attempts)
