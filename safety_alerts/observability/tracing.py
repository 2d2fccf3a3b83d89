"""Helpers for tick-scoped identifiers in logs."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from safety_alerts.config.logging_config import bind_context, unbind_context

TICK_ID_KEY = "tick_id"


@contextmanager
def tick_scope(existing_id: str | None = None) -> Iterator[str]:
    """Bind a tick identifier to every log line emitted inside the context."""

    tick_id = existing_id or uuid4().hex[:12]
    bind_context(**{TICK_ID_KEY: tick_id})
    try:
        yield tick_id
    finally:
        unbind_context(TICK_ID_KEY)


__all__ = ["TICK_ID_KEY", "tick_scope"]
