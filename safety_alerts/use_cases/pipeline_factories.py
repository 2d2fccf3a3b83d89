"""Compose the pipeline object graph from settings."""

from __future__ import annotations

from dataclasses import dataclass

from safety_alerts.adapters.config_routing_store import ConfigRoutingStore
from safety_alerts.adapters.ledger_factory import create_ledger_store
from safety_alerts.adapters.samsara_client import SamsaraClient
from safety_alerts.adapters.telegram_transport import TelegramTransport
from safety_alerts.config.logging_config import get_logger
from safety_alerts.config.settings import Settings
from safety_alerts.domain.protocols import LedgerStoreProtocol
from safety_alerts.services.delivery_ledger import DeliveryLedger
from safety_alerts.services.media_resolver import MediaResolver
from safety_alerts.services.vehicle_directory import VehicleDirectory
from safety_alerts.services.video_downloader import VideoDownloader
from safety_alerts.use_cases.deliver_event import DeliveryOrchestrator, DeliveryPolicy
from safety_alerts.use_cases.fetch_speeding_intervals import SpeedingIntervalFetcher
from safety_alerts.use_cases.run_safety_tick import SafetyAlertPipeline, TickConfig
from safety_alerts.use_cases.send_reminders import ReminderBroadcaster

logger = get_logger(__name__)


@dataclass
class PipelineDependencies:
    """Runtime dependencies shared by the runner and the diagnostics script."""

    settings: Settings
    client: SamsaraClient
    store: LedgerStoreProtocol
    ledger: DeliveryLedger
    directory: VehicleDirectory
    interval_fetcher: SpeedingIntervalFetcher
    routing: ConfigRoutingStore

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineDependencies:
        client = SamsaraClient(
            settings.samsara_api_token.get_secret_value(),
            base_url=settings.samsara_base_url,
            timeout_seconds=settings.samsara_timeout_seconds,
        )
        directory = VehicleDirectory(
            client,
            ttl_seconds=settings.vehicle_cache_ttl_seconds,
            override_ids=settings.vehicle_asset_ids,
        )
        store = create_ledger_store(settings)
        return cls(
            settings=settings,
            client=client,
            store=store,
            ledger=DeliveryLedger(store),
            directory=directory,
            interval_fetcher=SpeedingIntervalFetcher(
                client,
                directory,
                chunk_size=settings.speeding_chunk_size,
                max_pages=settings.samsara_max_pages,
                page_limit=settings.samsara_page_limit,
            ),
            routing=ConfigRoutingStore(settings.routes),
        )

    def close(self) -> None:
        self.client.close()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()


def build_pipeline(
    deps: PipelineDependencies, transport: TelegramTransport
) -> SafetyAlertPipeline:
    """Wire the delivery orchestrator and tick pipeline."""
    settings = deps.settings
    orchestrator = DeliveryOrchestrator(
        transport,
        deps.ledger,
        MediaResolver(deps.client, window_minutes=settings.media_lookup_window_minutes),
        VideoDownloader(
            max_size_mb=settings.video_download_max_size_mb,
            timeout_ms=settings.video_download_timeout_ms,
        ),
        DeliveryPolicy.from_settings(settings),
    )
    logger.info(
        "pipeline_built",
        dry_run=settings.dry_run,
        routes=len(settings.routes),
        database_type=settings.database_type,
    )
    return SafetyAlertPipeline(
        client=deps.client,
        directory=deps.directory,
        interval_fetcher=deps.interval_fetcher,
        routing=deps.routing,
        orchestrator=orchestrator,
        ledger=deps.ledger,
        config=TickConfig.from_settings(settings),
    )


def build_reminder_broadcaster(
    deps: PipelineDependencies, transport: TelegramTransport
) -> ReminderBroadcaster:
    return ReminderBroadcaster(transport, deps.routing, dry_run=deps.settings.dry_run)


def create_transport(settings: Settings) -> TelegramTransport:
    return TelegramTransport(
        settings.telegram_bot_token.get_secret_value(),
        send_timeout_seconds=settings.telegram_send_timeout_seconds,
    )
