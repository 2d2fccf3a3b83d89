"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from safety_alerts.domain.models import (
    Destination,
    ProcessedLogRecord,
    SpeedingPage,
    TimeWindow,
    UnifiedEvent,
    VehicleInfo,
)


class TelemetryClientProtocol(Protocol):
    """Fleet telemetry API (safety events, speeding intervals, vehicles)."""

    def fetch_safety_events(
        self,
        window: TimeWindow,
        *,
        limit: int,
        vehicle_ids: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch raw safety event records inside ``window``.

        Raises:
            TelemetryAPIError: On network errors, timeouts or non-2xx responses
            MalformedResponseError: When the payload is not a list of records
        """
        ...

    def fetch_speeding_page(
        self,
        window: TimeWindow,
        asset_ids: list[str],
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> SpeedingPage:
        """Fetch one page of speeding intervals for ``asset_ids``.

        Raises:
            TelemetryAPIError: On network errors, timeouts or non-2xx responses
        """
        ...

    def fetch_vehicles(self) -> list[dict[str, Any]]:
        """Fetch the full vehicle roster."""
        ...


class MessageTransportProtocol(Protocol):
    """Chat transport used to deliver alerts.

    Implementations raise :class:`TransportError` carrying a machine-readable
    ``code``/``category`` on any failure.
    """

    def send_text(
        self, chat_id: int, text: str, *, parse_mode: str | None = None
    ) -> int | None:
        """Send a text message and return the message id when known."""
        ...

    def send_video(
        self,
        chat_id: int,
        video: str | Path,
        *,
        caption: str,
        parse_mode: str | None = None,
    ) -> int | None:
        """Send a video by URL (``str``) or by uploading a local file (``Path``)."""
        ...


class LedgerStoreProtocol(Protocol):
    """Persistent delivery ledger plus processed-event audit log."""

    def is_delivered(self, event_id: str) -> bool:
        """Return True when the event id has a delivery record."""
        ...

    def mark_delivered(self, event_id: str, event_type: str, sent_at: datetime) -> None:
        """Insert or refresh the delivery record for ``event_id``."""
        ...

    def is_processed(self, event_id: str) -> bool:
        """Return True when the event id has an audit log row."""
        ...

    def log_processed(self, record: ProcessedLogRecord) -> None:
        """Upsert an audit log row keyed by event id."""
        ...

    def purge_delivered_before(self, cutoff: datetime) -> int:
        """Delete delivery records sent before ``cutoff``; return rows removed."""
        ...


class RoutingStoreProtocol(Protocol):
    """Vehicle name → destination chat lookup."""

    def find_destination_by_vehicle_name(self, vehicle_name: str) -> Destination | None:
        ...

    def find_destination_by_id(self, chat_id: int) -> Destination | None:
        ...

    def list_destinations(self) -> list[Destination]:
        """Every enabled destination chat, once each, in configuration order."""
        ...


class VehicleDirectoryProtocol(Protocol):
    """Cached vehicle roster."""

    def get(self) -> list[VehicleInfo]:
        ...

    def asset_ids(self) -> list[str]:
        ...

    def name_for(self, asset_id: str) -> str | None:
        ...


class MediaResolverProtocol(Protocol):
    """Late video URL lookup for events created before media was ready."""

    def resolve(self, event: UnifiedEvent) -> str | None:
        ...


class VideoDownloaderProtocol(Protocol):
    """Download a video URL to a temporary file for re-upload."""

    def download(self, url: str, event_id: str) -> AbstractContextManager[Path]:
        """Context manager yielding a local path; the file is removed on exit.

        Raises:
            VideoDownloadError: On network errors, timeouts or size cap breach
        """
        ...
