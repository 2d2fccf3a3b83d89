"""Cached vehicle roster used for asset-id discovery and name resolution."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Final

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import SafetyAlertsError
from safety_alerts.domain.models import VehicleInfo
from safety_alerts.domain.protocols import TelemetryClientProtocol

logger = get_logger(__name__)

FAILED_REFRESH_RETRY_SECONDS: Final[float] = 60.0


class VehicleDirectory:
    """TTL cache over the telemetry vehicle list.

    Writes replace the whole roster; a failed refresh keeps the previous one.
    A non-empty ``override_ids`` list replaces live discovery of asset ids,
    while names are still looked up from the roster.
    """

    def __init__(
        self,
        client: TelemetryClientProtocol,
        *,
        ttl_seconds: float = 600.0,
        override_ids: list[str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl_seconds = max(ttl_seconds, 0.0)
        self._override_ids = [str(asset_id) for asset_id in override_ids or []]
        self._clock = clock
        self._lock = threading.Lock()
        self._vehicles: list[VehicleInfo] = []
        self._names: dict[str, str | None] = {}
        self._fetched_at: float | None = None

    @property
    def uses_override(self) -> bool:
        return bool(self._override_ids)

    def _is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self._ttl_seconds

    def refresh(self) -> list[VehicleInfo]:
        """Reload the roster from the API, keeping the previous one on failure."""
        try:
            records = self._client.fetch_vehicles()
        except SafetyAlertsError as exc:
            logger.warning(
                "vehicle_directory_refresh_failed",
                error=str(exc),
                cached=len(self._vehicles),
            )
            with self._lock:
                # Retry no sooner than FAILED_REFRESH_RETRY_SECONDS from now.
                retry_in = min(FAILED_REFRESH_RETRY_SECONDS, self._ttl_seconds)
                self._fetched_at = self._clock() - self._ttl_seconds + retry_in
                return list(self._vehicles)

        vehicles = [
            VehicleInfo(id=str(record["id"]), name=record.get("name"))
            for record in records
            if record.get("id") is not None
        ]
        with self._lock:
            self._vehicles = vehicles
            self._names = {vehicle.id: vehicle.name for vehicle in vehicles}
            self._fetched_at = self._clock()
        logger.info("vehicle_directory_refreshed", count=len(vehicles))
        return list(vehicles)

    def get(self) -> list[VehicleInfo]:
        """Return the roster, refreshing it when the TTL has expired."""
        with self._lock:
            if self._is_fresh():
                return list(self._vehicles)
        return self.refresh()

    def asset_ids(self) -> list[str]:
        """Asset ids to query: the override list when set, else the live roster."""
        if self._override_ids:
            return list(self._override_ids)
        return [vehicle.id for vehicle in self.get()]

    def name_for(self, asset_id: str) -> str | None:
        """Display name for ``asset_id`` or ``None`` when unknown."""
        self.get()
        with self._lock:
            return self._names.get(asset_id)
