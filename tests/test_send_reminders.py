"""Tests for the PTI reminder broadcast."""

from __future__ import annotations

from safety_alerts.adapters.config_routing_store import ConfigRoutingStore
from safety_alerts.domain.exceptions import TransportError
from safety_alerts.domain.models import Destination, RouteConfig
from safety_alerts.domain.reminder_messages import PTI_MESSAGES, reminder_text
from safety_alerts.use_cases.send_reminders import (
    ReminderBroadcaster,
    build_reminder_message,
)
from tests.conftest import NOW, RecordingTransport


def _routing() -> ConfigRoutingStore:
    return ConfigRoutingStore(
        [
            RouteConfig(
                chat_id=-1001,
                chat_name="Truck 101",
                vehicles=["Truck 101"],
                driver_username="driver101",
                language="ru",
            ),
            RouteConfig(
                chat_id=-1002,
                chat_name="Truck 202",
                vehicles=["Truck 202"],
                driver_user_id=42,
                language="UZ",
            ),
            RouteConfig(chat_id=-1003, chat_name="Yard", vehicles=["Truck 303"]),
            RouteConfig(
                chat_id=-1004,
                chat_name="Retired",
                vehicles=["Truck 404"],
                enabled=False,
            ),
            RouteConfig(chat_id=-1001, chat_name="Truck 101 trailer", vehicles=["T1"]),
        ]
    )


def test_reminder_text_falls_back_to_english() -> None:
    assert reminder_text("ru") == PTI_MESSAGES["ru"]
    assert reminder_text(" UZ ") == PTI_MESSAGES["uz"]
    assert reminder_text("de") == PTI_MESSAGES["en"]
    assert reminder_text(None) == PTI_MESSAGES["en"]


def test_reminder_message_prefixes_mention() -> None:
    with_mention = Destination(chat_id=1, name="a", mention="@driver101")
    without = Destination(chat_id=2, name="b")

    assert build_reminder_message(with_mention) == (
        "@driver101\n\n" + PTI_MESSAGES["en"]
    )
    assert build_reminder_message(without) == PTI_MESSAGES["en"]


def test_broadcast_reaches_each_enabled_chat_once() -> None:
    transport = RecordingTransport()

    result = ReminderBroadcaster(transport, _routing(), clock=lambda: NOW).send()

    assert result.sent == 3
    assert result.failed == 0
    assert [chat for _, chat, _ in transport.calls] == [-1001, -1002, -1003]
    assert transport.calls[0][2].startswith("@driver101\n\n")
    assert transport.calls[0][2].endswith(PTI_MESSAGES["ru"])
    assert transport.calls[1][2] == (
        "[Driver](tg://user?id=42)\n\n" + PTI_MESSAGES["uz"]
    )
    assert transport.calls[2][2] == PTI_MESSAGES["en"]


def test_failed_chat_does_not_stop_the_broadcast() -> None:
    transport = RecordingTransport()
    transport.errors["text"].append(
        TransportError("Forbidden: bot was kicked", code=403, category="forbidden")
    )

    result = ReminderBroadcaster(transport, _routing()).send()

    assert result.failed == 1
    assert result.sent == 2
    assert result.errors == ["-1001: Forbidden: bot was kicked"]
    assert len(transport.calls) == 3


def test_dry_run_sends_nothing() -> None:
    transport = RecordingTransport()

    result = ReminderBroadcaster(transport, _routing(), dry_run=True).send()

    assert result.dry_run == 3
    assert transport.calls == []


def test_no_routes_is_a_noop() -> None:
    transport = RecordingTransport()

    result = ReminderBroadcaster(transport, ConfigRoutingStore([])).send()

    assert result.sent == 0
    assert transport.calls == []
