"""Tests for the Telegram transport's sync facade and error mapping."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from telegram.error import (
    BadRequest,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)

from safety_alerts.adapters.telegram_transport import (
    TelegramTransport,
    to_transport_error,
)
from safety_alerts.domain.exceptions import TransportError


class StubBot:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.error: TelegramError | None = None
        self.initialized = 0
        self.shutdowns = 0

    async def initialize(self) -> None:
        self.initialized += 1

    async def shutdown(self) -> None:
        self.shutdowns += 1

    async def send_message(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(("message", kwargs))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(message_id=101)

    async def send_video(self, **kwargs: Any) -> SimpleNamespace:
        video = kwargs["video"]
        if hasattr(video, "read"):
            kwargs["video"] = video.read()
        self.calls.append(("video", kwargs))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(message_id=202)


@pytest.fixture
def bot() -> StubBot:
    return StubBot()


@pytest.fixture
def transport(bot: StubBot) -> Iterator[TelegramTransport]:
    telegram_transport = TelegramTransport(bot=bot, send_timeout_seconds=5)
    yield telegram_transport
    telegram_transport.close()


@pytest.mark.parametrize(
    ("error", "code", "category"),
    [
        (RetryAfter(30), 429, "rate_limited"),
        (InvalidToken(), 401, "unauthorized"),
        (Forbidden("bot was blocked by the user"), 403, "forbidden"),
        (BadRequest("Wrong file identifier/HTTP URL specified"), 400, "bad_request"),
        (TimedOut(), None, "timeout"),
        (NetworkError("connection reset"), None, "network"),
        (TelegramError("something else"), None, "telegram"),
    ],
)
def test_error_mapping(error: TelegramError, code: int | None, category: str) -> None:
    mapped = to_transport_error(error)

    assert mapped.code == code
    assert mapped.category == category
    assert mapped.description


def test_bad_request_keeps_description() -> None:
    mapped = to_transport_error(BadRequest("Failed to get HTTP URL content"))

    assert mapped.description == "Failed to get HTTP URL content"


def test_requires_token_or_bot() -> None:
    with pytest.raises(ValueError):
        TelegramTransport()
    with pytest.raises(ValueError):
        TelegramTransport(bot=StubBot(), send_timeout_seconds=0)


def test_send_text_returns_message_id(
    transport: TelegramTransport, bot: StubBot
) -> None:
    message_id = transport.send_text(-100123, "*hello*", parse_mode="Markdown")
    transport.send_text(-100123, "again")

    assert message_id == 101
    assert bot.initialized == 1
    kind, kwargs = bot.calls[0]
    assert kind == "message"
    assert kwargs["chat_id"] == -100123
    assert kwargs["text"] == "*hello*"
    assert kwargs["parse_mode"] == "Markdown"


def test_send_video_by_url(transport: TelegramTransport, bot: StubBot) -> None:
    message_id = transport.send_video(
        -100123, "https://media.example.com/a.mp4", caption="caption"
    )

    assert message_id == 202
    _, kwargs = bot.calls[0]
    assert kwargs["video"] == "https://media.example.com/a.mp4"
    assert kwargs["caption"] == "caption"
    assert kwargs["supports_streaming"] is True


def test_send_video_uploads_local_file(
    transport: TelegramTransport, bot: StubBot, tmp_path: Path
) -> None:
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"video-bytes")

    transport.send_video(-100123, clip, caption="caption")

    assert bot.calls[0][1]["video"] == b"video-bytes"


def test_send_errors_become_transport_errors(
    transport: TelegramTransport, bot: StubBot
) -> None:
    bot.error = BadRequest("Wrong type of the web page content")

    with pytest.raises(TransportError) as exc_info:
        transport.send_video(-100123, "https://media.example.com/a.mp4", caption="c")

    assert exc_info.value.code == 400


def test_close_shuts_down_bot(bot: StubBot) -> None:
    transport = TelegramTransport(bot=bot)
    transport.send_text(-100123, "hello")

    transport.close()

    assert bot.shutdowns == 1


def test_close_without_sends_is_noop(bot: StubBot) -> None:
    TelegramTransport(bot=bot).close()

    assert bot.shutdowns == 0
