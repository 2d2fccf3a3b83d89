from __future__ import annotations

"""Long-running driver loop: one pipeline tick every ``tick_interval_seconds``."""

import argparse
import sys
from pathlib import Path

import pytz

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import get_settings
from safety_alerts.domain.exceptions import ConfigurationError, RepositoryError
from safety_alerts.observability.metrics import ensure_metrics_exporter
from safety_alerts.use_cases.pipeline_factories import (
    PipelineDependencies,
    build_pipeline,
    build_reminder_broadcaster,
    create_transport,
)

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the driver safety alert loop")
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Override scheduler.tick_interval_seconds",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would be sent without calling the chat API or the ledger",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Keep HTTP client loggers at the configured level",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single tick and exit",
    )
    args = parser.parse_args(argv)
    if args.interval_seconds is not None and args.interval_seconds <= 0:
        parser.error("--interval-seconds must be greater than 0")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    if args.dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    pipeline_runtime.initialize_logging(
        settings, json_logs=args.json_logs, verbose=args.verbose
    )

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)

    if settings.metrics_enabled:
        ensure_metrics_exporter(settings.metrics_port)

    try:
        deps = PipelineDependencies.from_settings(settings)
    except (ConfigurationError, RepositoryError) as exc:
        logger.error("pipeline_startup_failed", error=str(exc))
        return 1

    transport = create_transport(settings)
    pipeline = build_pipeline(deps, transport)
    housekeeping = pipeline_runtime.PeriodicTask(
        pipeline.purge_expired,
        interval_seconds=settings.housekeeping_interval_minutes * 60,
    )

    reminders: pipeline_runtime.DailySchedule | None = None
    if settings.pti_reminders_enabled and not args.run_once:
        try:
            reminders = pipeline_runtime.DailySchedule(
                build_reminder_broadcaster(deps, transport).send,
                times=settings.pti_reminder_times,
                tz_name=settings.pti_reminder_timezone,
            )
        except (pytz.UnknownTimeZoneError, ValueError) as exc:
            logger.error("reminder_schedule_disabled", error=str(exc))

    def _tick() -> None:
        pipeline.run_tick()
        housekeeping.maybe_run()
        if reminders is not None:
            reminders.maybe_run()

    interval = args.interval_seconds or float(settings.tick_interval_seconds)
    try:
        pipeline_runtime.run_scheduler_loop(
            controller=controller,
            interval_seconds=interval,
            run_once=args.run_once,
            action=_tick,
        )
    finally:
        transport.close()
        deps.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
