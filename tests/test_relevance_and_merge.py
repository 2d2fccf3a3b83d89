"""Tests for the relevance filter and the in-batch merger."""

from __future__ import annotations

from datetime import timedelta

import pytest

from safety_alerts.domain.models import EventSource, UnifiedEvent
from safety_alerts.services.event_merger import merge_and_dedupe
from safety_alerts.services.relevance_filter import (
    compact,
    filter_relevant,
    is_relevant,
)
from tests.conftest import NOW, make_safety_event, make_speeding_event


def test_compact_strips_whitespace_and_underscores() -> None:
    assert compact("Harsh_Brake") == "harshbrake"
    assert compact("Red  Light\t") == "redlight"


@pytest.mark.parametrize(
    ("event_type", "labels", "expected"),
    [
        ("following_distance", [], False),
        ("harsh_braking", [], True),
        ("harshBrake", [], True),
        ("harsh_turn", [], False),
        ("speeding,_following_distance", [], False),
        ("unknown", [{"label": "rollingStop"}], True),
        ("unknown", [{"name": "Red Light"}], True),
        ("unknown", [{"label": "followingDistance"}, {"name": "Speeding"}], False),
        ("max_speed", [], True),
        ("drowsy", [], False),
    ],
)
def test_safety_event_relevance(
    event_type: str, labels: list[dict[str, str]], expected: bool
) -> None:
    details = {"behavior_labels": labels}
    event = make_safety_event(event_type=event_type, details=details)

    assert is_relevant(event) is expected


def test_severe_speeding_interval_is_always_relevant() -> None:
    assert is_relevant(make_speeding_event()) is True


def test_safety_event_named_severe_speeding_still_goes_through_keywords() -> None:
    event = UnifiedEvent(
        source=EventSource.SAFETY,
        id="evt-2",
        type="severe_speeding",
        occurred_at=NOW,
        details={"behavior_labels": [{"label": "following distance"}]},
    )

    assert is_relevant(event) is False


def test_filter_relevant_keeps_order() -> None:
    events = [
        make_safety_event("a", event_type="harsh_brake"),
        make_safety_event("b", event_type="following_distance"),
        make_safety_event("c", event_type="red_light"),
    ]

    assert [event.id for event in filter_relevant(events)] == ["a", "c"]


def test_merge_keeps_first_occurrence_and_sorts() -> None:
    late = make_safety_event("late", occurred_at=NOW)
    early = make_safety_event("early", occurred_at=NOW - timedelta(minutes=30))
    duplicate = make_safety_event(
        "late", occurred_at=NOW - timedelta(hours=2), event_type="red_light"
    )
    speeding = make_speeding_event()

    merged = merge_and_dedupe([late, early], [duplicate, speeding])

    assert [event.id for event in merged] == [speeding.id, "early", "late"]
    assert merged[-1].type == "harsh_brake"


def test_merge_is_stable_for_equal_timestamps() -> None:
    first = make_safety_event("first", occurred_at=NOW)
    second = make_safety_event("second", occurred_at=NOW)

    merged = merge_and_dedupe([first], [second])

    assert [event.id for event in merged] == ["first", "second"]
