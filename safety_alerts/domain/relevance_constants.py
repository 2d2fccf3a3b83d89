"""Keyword tables used by the relevance filter."""

from typing import Final

SPEEDING_KEYWORDS: Final[tuple[str, ...]] = (
    "speed",
    "speeding",
    "max speed",
    "severe speed",
    "severe speeding",
    "speeding (manual)",
)

DRIVING_BEHAVIOR_KEYWORDS: Final[tuple[str, ...]] = (
    "harsh brake",
    "harsh braking",
    "yield",
    "red light",
    "rolling stop",
)

ALLOWED_KEYWORDS: Final[tuple[str, ...]] = (
    SPEEDING_KEYWORDS + DRIVING_BEHAVIOR_KEYWORDS
)

# Blocked keywords win over allowed ones.
BLOCKED_KEYWORDS: Final[tuple[str, ...]] = (
    "following distance",
    "followingdistance",
)

SEVERE_SPEEDING_TYPE: Final[str] = "severe_speeding"
