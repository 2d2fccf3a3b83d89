"""Deliver one event to its destination chat.

Safety events go through a media-readiness state machine:

    grace period -> resolve video -> send by URL
        -> (fetchable-content error) download + upload
        -> text fallback

Speeding intervals are sent as text. Only a confirmed send writes the ledger.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import Settings
from safety_alerts.domain.delivery_constants import (
    FETCHABLE_CONTENT_CODES,
    FETCHABLE_CONTENT_MARKERS,
)
from safety_alerts.domain.exceptions import TransportError, VideoDownloadError
from safety_alerts.domain.models import (
    DeliveryMethod,
    DeliveryOutcome,
    DeliveryStatus,
    Destination,
    EventSource,
    UnifiedEvent,
)
from safety_alerts.domain.protocols import (
    MediaResolverProtocol,
    MessageTransportProtocol,
    VideoDownloaderProtocol,
)
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.message_formatter import (
    MESSAGE_PARSE_MODE,
    format_safety_caption,
    format_speeding_message,
    mask_video_url,
)

logger = get_logger(__name__)


def is_fetchable_content_error(error: TransportError) -> bool:
    """True when the chat server could not fetch or accept the media by URL.

    Only these failures are worth a download-and-upload retry; anything else
    (auth, rate limit, network) goes straight to the text fallback.
    """
    if error.code in FETCHABLE_CONTENT_CODES:
        return True
    description = error.description.lower()
    return any(marker in description for marker in FETCHABLE_CONTENT_MARKERS)


@dataclass(slots=True)
class DeliveryPolicy:
    """Timing and mode knobs for the orchestrator."""

    media_ready_delay: timedelta = timedelta(minutes=3)
    media_max_wait: timedelta = timedelta(minutes=10)
    display_timezone: str = "America/New_York"
    allow_text_without_video: bool = False
    dry_run: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> DeliveryPolicy:
        return cls(
            media_ready_delay=timedelta(minutes=settings.media_ready_delay_minutes),
            media_max_wait=timedelta(minutes=settings.media_max_wait_minutes),
            display_timezone=settings.display_timezone,
            allow_text_without_video=settings.allow_text_without_video,
            dry_run=settings.dry_run,
        )


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DeliveryOrchestrator:
    """Gate, send and record a single event."""

    def __init__(
        self,
        transport: MessageTransportProtocol,
        ledger: DeliveryLedger,
        media_resolver: MediaResolverProtocol,
        downloader: VideoDownloaderProtocol,
        policy: DeliveryPolicy | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._transport = transport
        self._ledger = ledger
        self._media_resolver = media_resolver
        self._downloader = downloader
        self._policy = policy or DeliveryPolicy()
        self._clock = clock

    def handle(
        self,
        event: UnifiedEvent,
        destination: Destination | None,
        *,
        vehicle_name: str | None = None,
        now: datetime | None = None,
        allow_text_without_video: bool | None = None,
    ) -> DeliveryOutcome:
        """Run the delivery decision for one event.

        Args:
            event: Normalized, relevant event
            destination: Resolved chat or ``None`` when the vehicle is unrouted
            vehicle_name: Display name used in the message and audit log
            now: Evaluation time (defaults to the orchestrator clock)
            allow_text_without_video: Override of the policy flag
        """
        now = now or self._clock()
        vehicle_name = vehicle_name or event.vehicle_name

        if self._ledger.already_handled(event):
            logger.debug("event_already_delivered", event_id=event.id)
            return DeliveryOutcome(event_id=event.id, status=DeliveryStatus.DUPLICATE)

        if destination is None:
            logger.info(
                "event_no_destination",
                event_id=event.id,
                vehicle_name=vehicle_name,
                asset_id=event.asset_id,
            )
            if not self._policy.dry_run:
                self._ledger.record_decision(event, vehicle_name=vehicle_name)
            return DeliveryOutcome(
                event_id=event.id, status=DeliveryStatus.NO_DESTINATION
            )

        if event.source is EventSource.SPEEDING_INTERVAL:
            return self._deliver_speeding(event, destination, vehicle_name, now)

        allow_text = (
            self._policy.allow_text_without_video
            if allow_text_without_video is None
            else allow_text_without_video
        )
        return self._deliver_safety(event, destination, vehicle_name, now, allow_text)

    def _deliver_speeding(
        self,
        event: UnifiedEvent,
        destination: Destination,
        vehicle_name: str | None,
        now: datetime,
    ) -> DeliveryOutcome:
        text = format_speeding_message(
            event,
            vehicle_name=vehicle_name,
            tz_name=self._policy.display_timezone,
            mention=destination.mention,
        )
        if self._policy.dry_run:
            return self._dry_run(event, destination, DeliveryMethod.TEXT, text)
        return self._send_text(
            event, destination, vehicle_name, text, attempts=[], now=now
        )

    def _deliver_safety(
        self,
        event: UnifiedEvent,
        destination: Destination,
        vehicle_name: str | None,
        now: datetime,
        allow_text: bool,
    ) -> DeliveryOutcome:
        age = event.age(now)
        if age < self._policy.media_ready_delay:
            return self._deferred(event, "media_grace_period", age)

        video_url = event.video_url or self._media_resolver.resolve(event)
        caption = format_safety_caption(
            event,
            vehicle_name=vehicle_name,
            tz_name=self._policy.display_timezone,
            mention=destination.mention,
        )

        if not video_url:
            if age < self._policy.media_max_wait and not allow_text:
                return self._deferred(event, "awaiting_media", age)
            if self._policy.dry_run:
                return self._dry_run(event, destination, DeliveryMethod.TEXT, caption)
            logger.info(
                "safety_event_sending_without_video",
                event_id=event.id,
                age_minutes=round(age.total_seconds() / 60, 1),
            )
            return self._send_text(
                event, destination, vehicle_name, caption, attempts=[], now=now
            )

        if self._policy.dry_run:
            return self._dry_run(
                event, destination, DeliveryMethod.VIDEO_URL, caption, video_url
            )

        attempts: list[DeliveryMethod] = [DeliveryMethod.VIDEO_URL]
        try:
            self._transport.send_video(
                destination.chat_id,
                video_url,
                caption=caption,
                parse_mode=MESSAGE_PARSE_MODE,
            )
        except TransportError as exc:
            fetchable = is_fetchable_content_error(exc)
            logger.warning(
                "video_url_send_failed",
                event_id=event.id,
                chat_id=destination.chat_id,
                masked_url=mask_video_url(video_url),
                code=exc.code,
                category=exc.category,
                error=exc.description,
                will_upload=fetchable,
            )
            if fetchable:
                attempts.append(DeliveryMethod.VIDEO_UPLOAD)
                if self._upload_video(event, destination, video_url, caption):
                    return self._delivered(
                        event,
                        destination,
                        vehicle_name,
                        DeliveryMethod.VIDEO_UPLOAD,
                        video_url,
                        attempts,
                        now,
                    )
            return self._send_text(
                event,
                destination,
                vehicle_name,
                caption,
                attempts=attempts,
                now=now,
                video_url=video_url,
            )

        return self._delivered(
            event,
            destination,
            vehicle_name,
            DeliveryMethod.VIDEO_URL,
            video_url,
            attempts,
            now,
        )

    def _upload_video(
        self,
        event: UnifiedEvent,
        destination: Destination,
        video_url: str,
        caption: str,
    ) -> bool:
        try:
            with self._downloader.download(video_url, event.id) as path:
                self._transport.send_video(
                    destination.chat_id,
                    path,
                    caption=caption,
                    parse_mode=MESSAGE_PARSE_MODE,
                )
        except (VideoDownloadError, TransportError) as exc:
            logger.warning(
                "video_upload_fallback_failed",
                event_id=event.id,
                chat_id=destination.chat_id,
                masked_url=mask_video_url(video_url),
                error=str(exc),
            )
            return False
        return True

    def _send_text(
        self,
        event: UnifiedEvent,
        destination: Destination,
        vehicle_name: str | None,
        text: str,
        *,
        attempts: list[DeliveryMethod],
        now: datetime,
        video_url: str | None = None,
    ) -> DeliveryOutcome:
        attempts = [*attempts, DeliveryMethod.TEXT]
        try:
            self._transport.send_text(
                destination.chat_id, text, parse_mode=MESSAGE_PARSE_MODE
            )
        except TransportError as exc:
            logger.error(
                "event_delivery_failed",
                event_id=event.id,
                chat_id=destination.chat_id,
                masked_url=mask_video_url(video_url) if video_url else None,
                code=exc.code,
                category=exc.category,
                error=exc.description,
                attempts=[attempt.value for attempt in attempts],
            )
            return DeliveryOutcome(
                event_id=event.id,
                status=DeliveryStatus.FAILED,
                chat_id=destination.chat_id,
                video_url=video_url,
                reason=exc.description,
                attempts=attempts,
            )
        return self._delivered(
            event,
            destination,
            vehicle_name,
            DeliveryMethod.TEXT,
            video_url,
            attempts,
            now,
        )

    def _delivered(
        self,
        event: UnifiedEvent,
        destination: Destination,
        vehicle_name: str | None,
        method: DeliveryMethod,
        video_url: str | None,
        attempts: list[DeliveryMethod],
        now: datetime,
    ) -> DeliveryOutcome:
        self._ledger.record_delivery(
            event,
            vehicle_name=vehicle_name,
            chat_id=destination.chat_id,
            video_url=video_url,
            method=method,
            sent_at=now,
        )
        logger.info(
            "event_delivered",
            event_id=event.id,
            source=event.source.value,
            chat_id=destination.chat_id,
            method=method.value,
            masked_url=mask_video_url(video_url) if video_url else None,
        )
        return DeliveryOutcome(
            event_id=event.id,
            status=DeliveryStatus.DELIVERED,
            method=method,
            chat_id=destination.chat_id,
            video_url=video_url,
            attempts=attempts,
        )

    @staticmethod
    def _deferred(event: UnifiedEvent, reason: str, age: timedelta) -> DeliveryOutcome:
        logger.info(
            "safety_event_deferred",
            event_id=event.id,
            reason=reason,
            age_minutes=round(age.total_seconds() / 60, 1),
        )
        return DeliveryOutcome(
            event_id=event.id, status=DeliveryStatus.DEFERRED, reason=reason
        )

    @staticmethod
    def _dry_run(
        event: UnifiedEvent,
        destination: Destination,
        method: DeliveryMethod,
        text: str,
        video_url: str | None = None,
    ) -> DeliveryOutcome:
        logger.info(
            "dry_run_delivery",
            event_id=event.id,
            chat_id=destination.chat_id,
            method=method.value,
            masked_url=mask_video_url(video_url) if video_url else None,
            text=text,
        )
        return DeliveryOutcome(
            event_id=event.id,
            status=DeliveryStatus.DRY_RUN,
            method=method,
            chat_id=destination.chat_id,
            video_url=video_url,
        )
