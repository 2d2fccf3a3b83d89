"""Common runtime helpers for the alert scripts."""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from datetime import time as time_of_day
from types import FrameType
from typing import Protocol

import pytz

from safety_alerts.config.logging_config import get_logger, setup_logging
from safety_alerts.config.settings import Settings

logger = get_logger(__name__)


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float) -> bool: ...


@dataclass
class _ShutdownController:
    """Mutable shutdown state shared across signal handlers and loops."""

    _event: threading.Event

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def request(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("shutdown_signal_received", signal=sig_name)
        self._event.set()


def create_shutdown_controller() -> _ShutdownController:
    return _ShutdownController(threading.Event())


def install_signal_handlers(controller: _ShutdownController) -> None:
    """Register SIGTERM/SIGINT handlers for graceful shutdown."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        controller.request(signum, frame)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


def initialize_logging(
    settings: Settings, *, json_logs: bool = False, verbose: bool = False
) -> None:
    """Initialize structlog-based logging for scripts."""

    setup_logging(log_level=settings.log_level, json_logs=json_logs, verbose=verbose)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)


class PeriodicTask:
    """Callable wrapper that only fires once ``interval_seconds`` have elapsed."""

    def __init__(
        self,
        action: Callable[[], object],
        *,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._action = action
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._last_run: float | None = None

    def maybe_run(self) -> bool:
        now = self._clock()
        if self._last_run is not None and now - self._last_run < self._interval_seconds:
            return False
        self._last_run = now
        self._action()
        return True


def parse_time_of_day(value: str) -> time_of_day:
    """Parse ``"HH:MM"`` into a naive time of day."""
    hours, _, minutes = value.strip().partition(":")
    return time_of_day(int(hours), int(minutes or 0))


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DailySchedule:
    """Fire ``action`` once per configured local time of day.

    A slot that already passed when the schedule is created is not replayed.
    Several slots missed in one gap (e.g. a long sleep) fire once.
    """

    def __init__(
        self,
        action: Callable[[], object],
        *,
        times: Sequence[str],
        tz_name: str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._action = action
        self._times = sorted(parse_time_of_day(value) for value in times)
        self._tz = pytz.timezone(tz_name)
        self._clock = clock
        self._last_slot = self._latest_slot(clock())

    def _latest_slot(self, now: datetime) -> datetime | None:
        local_now = now.astimezone(self._tz)
        for days_back in (0, 1):
            day = local_now.date() - timedelta(days=days_back)
            for slot_time in reversed(self._times):
                slot = self._tz.localize(datetime.combine(day, slot_time))
                if slot <= local_now:
                    return slot
        return None

    def maybe_run(self) -> bool:
        slot = self._latest_slot(self._clock())
        if slot is None or slot == self._last_slot:
            return False
        self._last_slot = slot
        logger.info("daily_schedule_fired", slot=slot.isoformat())
        self._action()
        return True


def run_scheduler_loop(
    *,
    controller: ShutdownSignal,
    interval_seconds: float,
    run_once: bool,
    action: Callable[[], object],
) -> None:
    """Execute a scheduler callback at a fixed interval.

    The next iteration starts only after the previous one returned, so
    iterations never overlap.
    """

    interval_seconds = max(0.1, interval_seconds)
    logger.info("scheduler_loop_started", interval=interval_seconds, run_once=run_once)
    iteration = 0
    while not controller.is_set():
        iteration += 1
        try:
            action()
        except Exception:  # noqa: BLE001
            logger.exception("scheduler_iteration_failed", iteration=iteration)
            if run_once:
                raise
        if run_once:
            break
        controller.wait(interval_seconds)

    logger.info("scheduler_loop_stopped", iterations=iteration)


__all__ = [
    "DailySchedule",
    "PeriodicTask",
    "ShutdownSignal",
    "create_shutdown_controller",
    "initialize_logging",
    "install_signal_handlers",
    "parse_time_of_day",
    "run_scheduler_loop",
]
