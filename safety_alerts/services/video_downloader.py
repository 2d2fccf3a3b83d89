"""Download a video to a temporary file for the upload fallback."""

from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Final

import requests

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.delivery_constants import (
    VIDEO_DOWNLOAD_MAX_SIZE_MB_DEFAULT,
    VIDEO_DOWNLOAD_TIMEOUT_MS_DEFAULT,
)
from safety_alerts.domain.exceptions import VideoDownloadError
from safety_alerts.services.message_formatter import mask_video_url

logger = get_logger(__name__)

CHUNK_SIZE_BYTES: Final[int] = 256 * 1024
_BYTES_PER_MB: Final[int] = 1024 * 1024


class VideoDownloader:
    """Stream a media URL into a temp file, enforcing a size cap and timeout."""

    def __init__(
        self,
        *,
        max_size_mb: int = VIDEO_DOWNLOAD_MAX_SIZE_MB_DEFAULT,
        timeout_ms: int = VIDEO_DOWNLOAD_TIMEOUT_MS_DEFAULT,
        session: requests.Session | None = None,
        temp_dir: str | None = None,
    ) -> None:
        self._max_bytes = max_size_mb * _BYTES_PER_MB
        self._timeout_seconds = timeout_ms / 1000
        self._session = session or requests.Session()
        self._temp_dir = temp_dir

    def _check_declared_size(self, response: requests.Response) -> None:
        declared = response.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > self._max_bytes:
            raise VideoDownloadError(
                f"Video is {int(declared) / _BYTES_PER_MB:.1f}MB, "
                f"cap is {self._max_bytes / _BYTES_PER_MB:.0f}MB"
            )

    def _stream_to(self, url: str, handle: IO[bytes]) -> int:
        deadline = time.monotonic() + self._timeout_seconds
        written = 0
        try:
            with self._session.get(
                url, stream=True, timeout=self._timeout_seconds
            ) as response:
                response.raise_for_status()
                self._check_declared_size(response)
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE_BYTES):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > self._max_bytes:
                        raise VideoDownloadError("Video exceeded the size cap")
                    if time.monotonic() > deadline:
                        raise VideoDownloadError("Video download timed out")
                    handle.write(chunk)
        except requests.exceptions.RequestException as exc:
            raise VideoDownloadError(f"Video download failed: {exc}") from exc

        if written == 0:
            raise VideoDownloadError("Video download returned no data")
        return written

    @contextmanager
    def download(self, url: str, event_id: str) -> Iterator[Path]:
        """Yield the path of the downloaded video; the file is always removed.

        Raises:
            VideoDownloadError: On HTTP errors, timeouts, empty bodies or size cap
        """
        safe_id = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in event_id)
        handle = tempfile.NamedTemporaryFile(
            prefix=f"safety-video-{safe_id}-{int(time.time() * 1000)}-",
            suffix=".mp4",
            dir=self._temp_dir,
            delete=False,
        )
        path = Path(handle.name)
        try:
            with handle:
                size = self._stream_to(url, handle)
            logger.info(
                "video_downloaded",
                event_id=event_id,
                masked_url=mask_video_url(url),
                size_mb=round(size / _BYTES_PER_MB, 2),
            )
            yield path
        finally:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning(
                    "video_temp_cleanup_failed", path=str(path), error=str(exc)
                )
