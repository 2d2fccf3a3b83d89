from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from scripts import pipeline_runtime


class FakeController:
    def __init__(self, stop_after: int) -> None:
        self.stop_after = stop_after
        self.waits: list[float] = []

    def is_set(self) -> bool:
        return len(self.waits) >= self.stop_after

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        return self.is_set()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_loop_runs_until_shutdown() -> None:
    controller = FakeController(stop_after=3)
    calls: list[int] = []

    pipeline_runtime.run_scheduler_loop(
        controller=controller,
        interval_seconds=30,
        run_once=False,
        action=lambda: calls.append(1),
    )

    assert len(calls) == 3
    assert controller.waits == [30, 30, 30]


def test_loop_survives_failing_iteration() -> None:
    controller = FakeController(stop_after=2)
    calls: list[int] = []

    def action() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("tick exploded")

    pipeline_runtime.run_scheduler_loop(
        controller=controller, interval_seconds=1, run_once=False, action=action
    )

    assert len(calls) == 2


def test_run_once_propagates_failure() -> None:
    def action() -> None:
        raise RuntimeError("tick exploded")

    with pytest.raises(RuntimeError):
        pipeline_runtime.run_scheduler_loop(
            controller=FakeController(stop_after=1),
            interval_seconds=1,
            run_once=True,
            action=action,
        )


def test_periodic_task_respects_interval() -> None:
    clock = FakeClock()
    calls: list[float] = []
    task = pipeline_runtime.PeriodicTask(
        lambda: calls.append(clock.now), interval_seconds=3600, clock=clock
    )

    assert task.maybe_run() is True
    clock.now = 1800
    assert task.maybe_run() is False
    clock.now = 3600
    assert task.maybe_run() is True

    assert calls == [0.0, 3600]


class FakeWallClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_daily_schedule_fires_once_per_local_slot() -> None:
    # 05:00 in New York (UTC-5 in January).
    clock = FakeWallClock(datetime(2025, 1, 1, 10, 0, tzinfo=UTC))
    calls: list[int] = []
    schedule = pipeline_runtime.DailySchedule(
        lambda: calls.append(1),
        times=["16:00", "06:00"],
        tz_name="America/New_York",
        clock=clock,
    )

    assert schedule.maybe_run() is False

    clock.now += timedelta(hours=1)
    assert schedule.maybe_run() is True
    clock.now += timedelta(minutes=1)
    assert schedule.maybe_run() is False

    clock.now = datetime(2025, 1, 1, 21, 0, tzinfo=UTC)
    assert schedule.maybe_run() is True
    assert calls == [1, 1]


def test_daily_schedule_does_not_replay_past_slot_on_start() -> None:
    clock = FakeWallClock(datetime(2025, 1, 1, 12, 0, tzinfo=UTC))
    calls: list[int] = []
    schedule = pipeline_runtime.DailySchedule(
        lambda: calls.append(1),
        times=["06:00"],
        tz_name="America/New_York",
        clock=clock,
    )

    assert schedule.maybe_run() is False
    clock.now += timedelta(days=1)
    assert schedule.maybe_run() is True
    assert calls == [1]


def test_parse_time_of_day() -> None:
    assert pipeline_runtime.parse_time_of_day("06:30").hour == 6
    assert pipeline_runtime.parse_time_of_day("16:05").minute == 5


def test_shutdown_controller_request_sets_event() -> None:
    controller = pipeline_runtime.create_shutdown_controller()

    controller.request(15, None)

    assert controller.is_set() is True
    assert controller.wait(0) is True
