"""Telegram delivery adapter using python-telegram-bot.

The bot API is async; this adapter drives it from synchronous pipeline code
through a dedicated background event loop thread.
"""

import asyncio
import threading
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Final, TypeVar

from telegram import Bot
from telegram.error import (
    BadRequest,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)

from safety_alerts.config.logging_config import get_logger
from safety_alerts.domain.exceptions import TransportError

T = TypeVar("T")

logger = get_logger(__name__)

DEFAULT_SEND_TIMEOUT_SECONDS: Final[float] = 60.0
LOOP_START_TIMEOUT_SECONDS: Final[float] = 10.0


def to_transport_error(exc: TelegramError) -> TransportError:
    """Map a python-telegram-bot error onto a coded :class:`TransportError`."""
    description = getattr(exc, "message", None) or str(exc)
    if isinstance(exc, RetryAfter):
        return TransportError(description, code=429, category="rate_limited")
    if isinstance(exc, InvalidToken):
        return TransportError(description, code=401, category="unauthorized")
    if isinstance(exc, Forbidden):
        return TransportError(description, code=403, category="forbidden")
    if isinstance(exc, BadRequest):
        return TransportError(description, code=400, category="bad_request")
    if isinstance(exc, TimedOut):
        return TransportError(description, category="timeout")
    if isinstance(exc, NetworkError):
        return TransportError(description, category="network")
    return TransportError(description, category="telegram")


class TelegramTransport:
    """Synchronous facade over :class:`telegram.Bot` for alert delivery.

    Example:
        >>> transport = TelegramTransport(bot_token="123:abc")
        >>> transport.send_text(-100123, "*Safety Warning*", parse_mode="Markdown")
    """

    def __init__(
        self,
        bot_token: str | None = None,
        *,
        send_timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
        bot: Any | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            bot_token: Bot API token (ignored when ``bot`` is given)
            send_timeout_seconds: Upper bound for one send, including upload
            bot: Pre-built bot object (tests inject stubs)
        """
        if bot is None and not bot_token:
            raise ValueError("Telegram bot_token must be provided")
        if send_timeout_seconds <= 0:
            raise ValueError("send_timeout_seconds must be positive")

        self._bot: Any = bot if bot is not None else Bot(token=bot_token or "")
        self._send_timeout_seconds = send_timeout_seconds
        self._initialized = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._loop_ready = threading.Event()
        self._loop_lock = threading.Lock()

    def _loop_runner(self) -> None:
        """Background thread that owns the asyncio event loop."""

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        with self._loop_lock:
            self._loop = loop
            self._loop_ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            with self._loop_lock:
                self._loop = None
                self._loop_thread = None
                self._loop_ready.clear()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        """Ensure a background event loop is running."""

        with self._loop_lock:
            if self._loop and self._loop.is_running():
                return self._loop

            self._loop_ready.clear()
            self._loop_thread = threading.Thread(
                target=self._loop_runner,
                name="TelegramTransportLoop",
                daemon=True,
            )
            self._loop_thread.start()

        if not self._loop_ready.wait(timeout=LOOP_START_TIMEOUT_SECONDS):
            raise TimeoutError("Telegram event loop failed to start")
        assert self._loop is not None
        return self._loop

    def _run_in_loop(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run coroutine on the background loop and wait for its result."""

        loop = self._ensure_loop()
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self._send_timeout_seconds)
        except TimeoutError as exc:
            future.cancel()
            raise TransportError(
                "Send did not complete in time", category="timeout"
            ) from exc

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        await self._bot.initialize()
        self._initialized = True

    async def _send_text_async(
        self, chat_id: int, text: str, parse_mode: str | None
    ) -> Any:
        await self._ensure_initialized()
        return await self._bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
            read_timeout=self._send_timeout_seconds,
            write_timeout=self._send_timeout_seconds,
        )

    async def _send_video_async(
        self,
        chat_id: int,
        video: str | Path,
        caption: str,
        parse_mode: str | None,
    ) -> Any:
        await self._ensure_initialized()
        if isinstance(video, Path):
            with video.open("rb") as video_file:
                return await self._bot.send_video(
                    chat_id=chat_id,
                    video=video_file,
                    caption=caption,
                    parse_mode=parse_mode,
                    supports_streaming=True,
                    read_timeout=self._send_timeout_seconds,
                    write_timeout=self._send_timeout_seconds,
                )
        return await self._bot.send_video(
            chat_id=chat_id,
            video=video,
            caption=caption,
            parse_mode=parse_mode,
            supports_streaming=True,
            read_timeout=self._send_timeout_seconds,
            write_timeout=self._send_timeout_seconds,
        )

    def send_text(
        self, chat_id: int, text: str, *, parse_mode: str | None = None
    ) -> int | None:
        """Send a text message.

        Raises:
            TransportError: When the chat API rejects or fails the send
        """
        try:
            message = self._run_in_loop(
                self._send_text_async(chat_id, text, parse_mode)
            )
        except TelegramError as exc:
            raise to_transport_error(exc) from exc
        return getattr(message, "message_id", None)

    def send_video(
        self,
        chat_id: int,
        video: str | Path,
        *,
        caption: str,
        parse_mode: str | None = None,
    ) -> int | None:
        """Send a video by URL (the chat server fetches it) or by local file upload.

        Raises:
            TransportError: When the chat API rejects or fails the send
        """
        try:
            message = self._run_in_loop(
                self._send_video_async(chat_id, video, caption, parse_mode)
            )
        except TelegramError as exc:
            raise to_transport_error(exc) from exc
        return getattr(message, "message_id", None)

    def close(self) -> None:
        """Shut down the bot session and stop the background loop."""
        with self._loop_lock:
            loop = self._loop
        if loop is None:
            return
        if self._initialized:
            try:
                asyncio.run_coroutine_threadsafe(self._bot.shutdown(), loop).result(
                    timeout=LOOP_START_TIMEOUT_SECONDS
                )
            except (TelegramError, TimeoutError) as exc:
                logger.warning("telegram_shutdown_failed", error=str(exc))
            self._initialized = False
        loop.call_soon_threadsafe(loop.stop)
        logger.info("telegram_transport_closed")
