"""Speeding interval fetch use case.

Queries the speeding-interval stream for every known asset over a window,
in bounded chunks of asset ids, following pagination per chunk. One failed
chunk never aborts the others.
"""

from collections.abc import Iterator, Mapping
from typing import Any, Final

from pydantic import ValidationError

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.delivery_constants import SPEEDING_CHUNK_SIZE_DEFAULT
from safety_alerts.domain.exceptions import SafetyAlertsError
from safety_alerts.domain.models import (
    IntervalFetchResult,
    SpeedingInterval,
    TimeWindow,
)
from safety_alerts.domain.protocols import TelemetryClientProtocol
from safety_alerts.observability.metrics import TELEMETRY_CHUNK_FAILURES_TOTAL
from safety_alerts.services.event_normalizer import first_non_empty, parse_timestamp
from safety_alerts.services.vehicle_directory import VehicleDirectory

logger = get_logger(__name__)

KMH_TO_MPH: Final[float] = 0.621371
DEFAULT_MAX_PAGES: Final[int] = 50
DEFAULT_PAGE_LIMIT: Final[int] = 100

_CONSUMED_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "asset",
        "assetId",
        "startTime",
        "endTime",
        "severityLevel",
        "severity",
        "maxSpeedMph",
        "speedLimitMph",
        "postedSpeedLimitMph",
        "maxSpeedKilometersPerHour",
        "postedSpeedLimitKilometersPerHour",
        "driverId",
        "driver",
        "location",
    }
)


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of ``items`` with at most ``size`` entries."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _speed_mph(
    record: Mapping[str, Any], mph_keys: tuple[str, ...], kmh_key: str
) -> float | None:
    for key in mph_keys:
        mph = _to_float(record.get(key))
        if mph is not None:
            return mph
    kmh = _to_float(record.get(kmh_key))
    if kmh is None:
        return None
    return round(kmh * KMH_TO_MPH, 1)


def build_interval(
    record: Mapping[str, Any], asset_id: str | None = None
) -> SpeedingInterval | None:
    """Convert one upstream interval record; ``None`` when it is unusable.

    Records without an asset id, with unparseable start/end times or with
    fields of the wrong type are dropped. Speeds are reported in mph,
    converted from km/h when needed.
    """
    asset = asset_id or first_non_empty(record, ("assetId", "asset.id"))
    start_time = record.get("startTime")
    end_time = record.get("endTime")
    if not asset or parse_timestamp(start_time) is None:
        return None
    if parse_timestamp(end_time) is None:
        return None

    driver_id = first_non_empty(record, ("driverId", "driver.id"))
    location = record.get("location")
    try:
        return SpeedingInterval(
            asset_id=str(asset),
            start_time=str(start_time),
            end_time=str(end_time),
            severity_level=first_non_empty(record, ("severityLevel", "severity")),
            max_speed_mph=_speed_mph(
                record, ("maxSpeedMph",), "maxSpeedKilometersPerHour"
            ),
            speed_limit_mph=_speed_mph(
                record,
                ("speedLimitMph", "postedSpeedLimitMph"),
                "postedSpeedLimitKilometersPerHour",
            ),
            driver_id=str(driver_id) if driver_id is not None else None,
            location=location if isinstance(location, dict) else None,
            extra={k: v for k, v in record.items() if k not in _CONSUMED_FIELDS},
        )
    except ValidationError as exc:
        logger.warning(
            "speeding_interval_malformed",
            asset_id=str(asset),
            start_time=str(start_time),
            error=str(exc),
        )
        return None


def flatten_records(records: list[Any]) -> list[SpeedingInterval]:
    """Flatten ``{asset: {id}, intervals: [...]}`` pages into single intervals.

    Records that are already flat (``assetId`` on the record) are accepted as-is.
    """
    intervals: list[SpeedingInterval] = []
    dropped = 0
    for record in records:
        if not isinstance(record, Mapping):
            dropped += 1
            continue
        nested = record.get("intervals")
        if isinstance(nested, list):
            asset_id = first_non_empty(record, ("asset.id", "assetId"))
            candidates = [
                build_interval(item, str(asset_id) if asset_id else None)
                for item in nested
                if isinstance(item, dict)
            ]
        else:
            candidates = [build_interval(record)]
        for interval in candidates:
            if interval is None:
                dropped += 1
            else:
                intervals.append(interval)

    if dropped:
        logger.warning("speeding_intervals_dropped", count=dropped)
    return intervals


class SpeedingIntervalFetcher:
    """Chunked, paginated fetch of speeding intervals."""

    def __init__(
        self,
        client: TelemetryClientProtocol,
        directory: VehicleDirectory,
        *,
        chunk_size: int = SPEEDING_CHUNK_SIZE_DEFAULT,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_limit: int = DEFAULT_PAGE_LIMIT,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if max_pages <= 0:
            raise ValueError("max_pages must be positive")
        self._client = client
        self._directory = directory
        self._chunk_size = chunk_size
        self._max_pages = max_pages
        self._page_limit = page_limit

    def _fetch_chunk(
        self, window: TimeWindow, asset_ids: list[str]
    ) -> tuple[list[SpeedingInterval], int]:
        intervals: list[SpeedingInterval] = []
        cursor: str | None = None
        pages = 0
        while pages < self._max_pages:
            page = self._client.fetch_speeding_page(
                window, asset_ids, cursor=cursor, limit=self._page_limit
            )
            pages += 1
            intervals.extend(flatten_records(page.records))
            cursor = page.next_cursor
            if not cursor or not page.records:
                break
        else:
            logger.warning(
                "speeding_page_ceiling_reached",
                max_pages=self._max_pages,
                chunk_assets=len(asset_ids),
            )
        return intervals, pages

    @staticmethod
    def _chunk_failed(
        result: IntervalFetchResult, index: int, chunk: list[str], exc: Exception
    ) -> None:
        result.failed_chunks += 1
        TELEMETRY_CHUNK_FAILURES_TOTAL.inc()
        logger.error(
            "speeding_chunk_failed",
            chunk_index=index,
            chunk_assets=len(chunk),
            error=str(exc),
        )

    def fetch(
        self, window: TimeWindow, asset_ids: list[str] | None = None
    ) -> IntervalFetchResult:
        """Fetch every interval overlapping ``window``.

        Args:
            window: Query window
            asset_ids: Explicit asset ids; defaults to the vehicle directory

        Returns:
            IntervalFetchResult with the unfiltered intervals and chunk counters
        """
        ids = asset_ids if asset_ids is not None else self._directory.asset_ids()
        result = IntervalFetchResult()
        if not ids:
            logger.warning("speeding_fetch_no_asset_ids")
            return result

        for index, chunk in enumerate(chunked(ids, self._chunk_size)):
            result.chunks += 1
            try:
                intervals, pages = self._fetch_chunk(window, chunk)
            except SafetyAlertsError as exc:
                self._chunk_failed(result, index, chunk, exc)
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("speeding_chunk_unexpected_error", chunk_index=index)
                self._chunk_failed(result, index, chunk, exc)
                continue
            result.pages += pages
            result.intervals.extend(intervals)

        logger.info(
            "speeding_intervals_fetched",
            total=len(result.intervals),
            upstream_severe=len(result.severe()),
            chunks=result.chunks,
            failed_chunks=result.failed_chunks,
            pages=result.pages,
        )
        return result
