"""Broadcast the daily PTI reminder to every routed chat.

Each chat gets the reminder in its configured language, prefixed with the
same driver mention used for alerts. A failed send is logged and counted;
it never stops the remaining chats.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import TransportError
from safety_alerts.domain.models import Destination, ReminderResult
from safety_alerts.domain.protocols import (
    MessageTransportProtocol,
    RoutingStoreProtocol,
)
from safety_alerts.domain.reminder_messages import reminder_text
from safety_alerts.observability.metrics import REMINDER_OUTCOMES_TOTAL
from safety_alerts.services.message_formatter import MESSAGE_PARSE_MODE

logger = get_logger(__name__)


def build_reminder_message(destination: Destination) -> str:
    text = reminder_text(destination.language)
    if destination.mention:
        return f"{destination.mention}\n\n{text}"
    return text


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ReminderBroadcaster:
    """Send the PTI reminder to all enabled destinations."""

    def __init__(
        self,
        transport: MessageTransportProtocol,
        routing: RoutingStoreProtocol,
        *,
        dry_run: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._transport = transport
        self._routing = routing
        self._dry_run = dry_run
        self._clock = clock

    def send(self) -> ReminderResult:
        result = ReminderResult(started_at=self._clock())
        destinations = self._routing.list_destinations()
        if not destinations:
            logger.warning("reminder_no_destinations")
            return result

        for destination in destinations:
            text = build_reminder_message(destination)
            if self._dry_run:
                logger.info(
                    "dry_run_reminder",
                    chat_id=destination.chat_id,
                    language=destination.language,
                    text=text,
                )
                result.dry_run += 1
                REMINDER_OUTCOMES_TOTAL.labels(status="dry_run").inc()
                continue

            try:
                self._transport.send_text(
                    destination.chat_id, text, parse_mode=MESSAGE_PARSE_MODE
                )
            except TransportError as exc:
                logger.error(
                    "reminder_send_failed",
                    chat_id=destination.chat_id,
                    chat_name=destination.name,
                    code=exc.code,
                    category=exc.category,
                    error=exc.description,
                )
                result.failed += 1
                result.errors.append(f"{destination.chat_id}: {exc.description}")
                REMINDER_OUTCOMES_TOTAL.labels(status="failed").inc()
                continue

            result.sent += 1
            REMINDER_OUTCOMES_TOTAL.labels(status="sent").inc()
            logger.info(
                "reminder_sent",
                chat_id=destination.chat_id,
                chat_name=destination.name,
                language=destination.language,
                with_mention=destination.mention is not None,
            )

        logger.info(
            "reminder_broadcast_completed",
            sent=result.sent,
            failed=result.failed,
            dry_run=result.dry_run,
        )
        return result
