"""Delivery ledger with the pipeline's failure semantics.

Reads that fail are treated as "not seen" so an alert is never lost to a
storage outage; writes that fail are logged and swallowed so a delivered
alert is not reported as failed.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import RepositoryError
from safety_alerts.domain.models import (
    DeliveryMethod,
    EventSource,
    ProcessedLogRecord,
    UnifiedEvent,
)
from safety_alerts.domain.protocols import LedgerStoreProtocol
from safety_alerts.services.message_formatter import behavior_text, location_of

logger = get_logger(__name__)


def build_processed_record(
    event: UnifiedEvent,
    *,
    vehicle_name: str | None,
    chat_id: int | None,
    video_url: str | None,
    method: DeliveryMethod,
) -> ProcessedLogRecord:
    coords = location_of(event)
    return ProcessedLogRecord(
        event_id=event.id,
        source=event.source,
        event_type=event.type,
        vehicle_name=vehicle_name,
        behavior=behavior_text(event),
        occurred_at=event.occurred_at,
        latitude=coords[0] if coords else None,
        longitude=coords[1] if coords else None,
        sent_to_chat_id=chat_id,
        video_url=video_url,
        delivery_method=method,
        raw=event.model_dump(mode="json"),
    )


class DeliveryLedger:
    """Dedup gate and audit trail in front of a :class:`LedgerStoreProtocol`."""

    def __init__(self, store: LedgerStoreProtocol) -> None:
        self._store = store

    def already_handled(self, event: UnifiedEvent) -> bool:
        """True when the event must not be delivered again.

        Safety events are also gated by the processed-event log, which holds
        terminal decisions such as "no destination".
        """
        try:
            if self._store.is_delivered(event.id):
                return True
            if event.source is EventSource.SAFETY:
                return self._store.is_processed(event.id)
        except RepositoryError as exc:
            logger.error(
                "ledger_read_failed_assuming_new", event_id=event.id, error=str(exc)
            )
        return False

    def record_delivery(
        self,
        event: UnifiedEvent,
        *,
        vehicle_name: str | None,
        chat_id: int,
        video_url: str | None,
        method: DeliveryMethod,
        sent_at: datetime,
    ) -> None:
        """Write the ledger row, then the audit row, after a confirmed send."""
        try:
            self._store.mark_delivered(event.id, event.type, sent_at)
        except RepositoryError as exc:
            logger.error("ledger_write_failed", event_id=event.id, error=str(exc))
        self._log(
            build_processed_record(
                event,
                vehicle_name=vehicle_name,
                chat_id=chat_id,
                video_url=video_url,
                method=method,
            )
        )

    def record_decision(self, event: UnifiedEvent, *, vehicle_name: str | None) -> None:
        """Audit a terminal decision that sent nothing (e.g. no destination)."""
        self._log(
            build_processed_record(
                event,
                vehicle_name=vehicle_name,
                chat_id=None,
                video_url=event.video_url,
                method=DeliveryMethod.NONE,
            )
        )

    def _log(self, record: ProcessedLogRecord) -> None:
        try:
            self._store.log_processed(record)
        except RepositoryError as exc:
            logger.error(
                "processed_log_write_failed", event_id=record.event_id, error=str(exc)
            )

    def purge(self, now: datetime, retention_days: int) -> int:
        """Drop ledger rows older than the retention horizon."""
        cutoff = now - timedelta(days=retention_days)
        try:
            removed = self._store.purge_delivered_before(cutoff)
        except RepositoryError as exc:
            logger.error("ledger_purge_failed", error=str(exc))
            return 0
        logger.info("ledger_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed
