"""Prometheus metrics for the alert pipeline.

The exporter is started explicitly by the runner (``metrics.enabled``); merely
importing this module never opens a port.
"""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from safety_alerts.config.logging_config import get_logger

logger = get_logger(__name__)

EVENTS_FETCHED_TOTAL: Final[Counter] = Counter(
    "safety_alerts_events_fetched_total",
    "Raw records fetched from the telemetry API",
    labelnames=("source",),
)

DELIVERY_OUTCOMES_TOTAL: Final[Counter] = Counter(
    "safety_alerts_delivery_outcomes_total",
    "Per-event delivery outcomes",
    labelnames=("source", "status", "method"),
)

TELEMETRY_CHUNK_FAILURES_TOTAL: Final[Counter] = Counter(
    "safety_alerts_telemetry_chunk_failures_total",
    "Speeding-interval asset chunks that failed to fetch",
)

TICK_DURATION_SECONDS: Final[Histogram] = Histogram(
    "safety_alerts_tick_duration_seconds",
    "Duration of one scheduler tick in seconds",
)

REMINDER_OUTCOMES_TOTAL: Final[Counter] = Counter(
    "safety_alerts_reminder_outcomes_total",
    "Scheduled reminder sends per chat",
    labelnames=("status",),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False


def ensure_metrics_exporter(port: int) -> None:
    """Start the Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error("metrics_exporter_start_failed", port=port, error=str(exc))
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "DELIVERY_OUTCOMES_TOTAL",
    "EVENTS_FETCHED_TOTAL",
    "REMINDER_OUTCOMES_TOTAL",
    "TELEMETRY_CHUNK_FAILURES_TOTAL",
    "TICK_DURATION_SECONDS",
    "ensure_metrics_exporter",
]
