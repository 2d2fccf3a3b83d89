from __future__ import annotations

"""Print a read-only snapshot of both telemetry feeds for the last N hours."""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import get_settings
from safety_alerts.domain.exceptions import ConfigurationError, RepositoryError
from safety_alerts.use_cases.diagnose_events import (
    DEFAULT_HOURS,
    diagnose_events,
    format_report,
)
from safety_alerts.use_cases.pipeline_factories import PipelineDependencies

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Diagnose safety event feeds")
    parser.add_argument(
        "hours",
        nargs="?",
        type=float,
        default=float(DEFAULT_HOURS),
        help="Lookback in hours (clamped to 1..48)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    try:
        deps = PipelineDependencies.from_settings(settings)
    except (ConfigurationError, RepositoryError) as exc:
        logger.error("diagnostics_startup_failed", error=str(exc))
        return 1

    try:
        report = diagnose_events(
            client=deps.client,
            directory=deps.directory,
            interval_fetcher=deps.interval_fetcher,
            ledger=deps.ledger,
            hours=args.hours,
            speeding_window_hours=settings.speeding_window_hours,
            buffer_minutes=settings.speeding_buffer_minutes,
            over_threshold_mph=settings.speeding_over_threshold_mph,
            expansion_hours=settings.speeding_expansion_hours,
        )
    finally:
        deps.close()

    print(format_report(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
