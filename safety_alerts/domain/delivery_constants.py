"""Defaults shared by the delivery, media and scheduling components."""

from typing import Final

MEDIA_READY_DELAY_MINUTES_DEFAULT: Final[int] = 3
MEDIA_MAX_WAIT_MINUTES_DEFAULT: Final[int] = 10
MEDIA_LOOKUP_WINDOW_MINUTES_DEFAULT: Final[int] = 5
MEDIA_LOOKUP_LIMIT: Final[int] = 100

VIDEO_DOWNLOAD_MAX_SIZE_MB_DEFAULT: Final[int] = 25
VIDEO_DOWNLOAD_TIMEOUT_MS_DEFAULT: Final[int] = 30_000

# Chat API status codes that mean "the server could not fetch/accept the media".
FETCHABLE_CONTENT_CODES: Final[frozenset[int]] = frozenset({400, 403})
FETCHABLE_CONTENT_MARKERS: Final[tuple[str, ...]] = ("bad request", "file", "fetch")

SPEEDING_WINDOW_HOURS_DEFAULT: Final[int] = 6
SPEEDING_BUFFER_MINUTES_DEFAULT: Final[int] = 10
SPEEDING_CHUNK_SIZE_DEFAULT: Final[int] = 200
SPEEDING_OVER_THRESHOLD_MPH_DEFAULT: Final[float] = 15.0
SPEEDING_EXPANSION_HOURS_DEFAULT: Final[tuple[int, ...]] = (2, 6, 12)

SAFETY_LOOKBACK_MINUTES_DEFAULT: Final[int] = 60
SAFETY_FETCH_LIMIT_DEFAULT: Final[int] = 100

TICK_INTERVAL_SECONDS_DEFAULT: Final[int] = 60
HOUSEKEEPING_INTERVAL_MINUTES_DEFAULT: Final[int] = 60
RETENTION_DAYS_DEFAULT: Final[int] = 7

DISPLAY_TIMEZONE_DEFAULT: Final[str] = "America/New_York"
