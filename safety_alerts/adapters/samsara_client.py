"""Fleet telemetry (Samsara) API client adapter."""

from datetime import UTC, datetime
from typing import Any, Final

import requests

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import (
    MalformedResponseError,
    RateLimitError,
    TelemetryAPIError,
)
from safety_alerts.domain.models import SpeedingPage, TimeWindow

logger = get_logger(__name__)

SAFETY_EVENTS_PATH: Final[str] = "/fleet/safety-events"
SPEEDING_INTERVALS_PATH: Final[str] = "/speeding-intervals/stream"
VEHICLES_PATH: Final[str] = "/fleet/vehicles"

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_VEHICLE_MAX_PAGES: Final[int] = 50


def format_api_time(value: datetime) -> str:
    """RFC 3339 with millisecond precision and a ``Z`` suffix."""
    utc_value = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    millis = utc_value.microsecond // 1000
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def _next_cursor(pagination: Any) -> str | None:
    if not isinstance(pagination, dict):
        return None
    cursor = pagination.get("nextCursor")
    if not cursor and pagination.get("hasNextPage"):
        cursor = pagination.get("endCursor")
    return str(cursor) if cursor else None


class SamsaraClient:
    """Thin synchronous client over the telemetry REST API.

    Every call is bounded by ``timeout_seconds``. Errors are raised, never
    retried here: the scheduler's next tick is the retry.
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = "https://api.samsara.com",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_token: Bearer token for the telemetry API
            base_url: API host (no trailing slash required)
            timeout_seconds: Client-side timeout for every request
            session: Optional pre-configured session (tests inject stubs)
        """
        if not api_token:
            raise ValueError("Telemetry api_token must be provided")
        if timeout_seconds <= 0:
            raise ValueError("Telemetry timeout_seconds must be positive")

        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
                "User-Agent": "safety-alerts/1.0",
            }
        )

    def close(self) -> None:
        self.session.close()

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self.session.get(
                url, params=params, timeout=self._timeout_seconds
            )
        except requests.exceptions.Timeout as exc:
            logger.warning("telemetry_request_timeout", path=path)
            raise TelemetryAPIError(f"Timeout calling {path}") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("telemetry_request_failed", path=path, error=str(exc))
            raise TelemetryAPIError(f"Request to {path} failed: {exc}") from exc

        if response.status_code == 429:
            retry_after_raw = response.headers.get("Retry-After") or ""
            retry_after = int(retry_after_raw) if retry_after_raw.isdigit() else None
            logger.warning("telemetry_rate_limited", path=path, retry_after=retry_after)
            raise RateLimitError(retry_after=retry_after)

        if not 200 <= response.status_code < 300:
            logger.warning(
                "telemetry_http_error",
                path=path,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise TelemetryAPIError(
                f"{path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{path} returned non-JSON body") from exc

    def fetch_safety_events(
        self,
        window: TimeWindow,
        *,
        limit: int,
        vehicle_ids: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch raw safety events inside ``window``.

        The record list may arrive as ``data``, ``safetyEvents`` or as the
        bare response body.
        """
        params: dict[str, Any] = {
            "startTime": format_api_time(window.start),
            "endTime": format_api_time(window.end),
            "limit": limit,
        }
        if vehicle_ids:
            params["vehicleIds"] = ",".join(vehicle_ids)

        payload = self._get(SAFETY_EVENTS_PATH, params)
        records: Any = payload
        if isinstance(payload, dict):
            records = payload.get("data") or payload.get("safetyEvents") or []

        if not isinstance(records, list):
            raise MalformedResponseError("Safety events payload is not a list")

        logger.debug(
            "safety_events_fetched",
            count=len(records),
            window_start=params["startTime"],
            window_end=params["endTime"],
        )
        return [record for record in records if isinstance(record, dict)]

    def fetch_speeding_page(
        self,
        window: TimeWindow,
        asset_ids: list[str],
        *,
        cursor: str | None = None,
        limit: int = 100,
    ) -> SpeedingPage:
        """Fetch one page of the speeding-interval stream."""
        params: dict[str, Any] = {
            "startTime": format_api_time(window.start),
            "endTime": format_api_time(window.end),
            "assetIds": ",".join(asset_ids),
            "limit": limit,
        }
        if cursor:
            params["cursor"] = cursor

        payload = self._get(SPEEDING_INTERVALS_PATH, params)
        if not isinstance(payload, dict):
            raise MalformedResponseError("Speeding interval payload is not an object")

        records = payload.get("data") or []
        if not isinstance(records, list):
            raise MalformedResponseError("Speeding interval data is not a list")

        return SpeedingPage(
            records=[record for record in records if isinstance(record, dict)],
            next_cursor=_next_cursor(payload.get("pagination")),
        )

    def fetch_vehicles(
        self, *, max_pages: int = DEFAULT_VEHICLE_MAX_PAGES
    ) -> list[dict[str, Any]]:
        """Fetch the vehicle roster, following pagination."""
        vehicles: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(max_pages):
            params: dict[str, Any] = {}
            if cursor:
                params["after"] = cursor
            payload = self._get(VEHICLES_PATH, params)
            if not isinstance(payload, dict):
                raise MalformedResponseError("Vehicles payload is not an object")

            page = payload.get("data") or []
            if not isinstance(page, list):
                raise MalformedResponseError("Vehicles data is not a list")
            vehicles.extend(record for record in page if isinstance(record, dict))

            cursor = _next_cursor(payload.get("pagination"))
            if not cursor or not page:
                break

        logger.info("vehicles_fetched", count=len(vehicles))
        return vehicles
