"""Engaged-time estimation from chronological chat messages.

Wall-clock time between the first and last message of a day is dominated
by idle gaps, so duration is estimated from the text itself: the time to
type user messages plus the time to read replies.  Messages further than
``SESSION_GAP`` apart belong to separate sessions, and each session counts
for at least one minute.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, NamedTuple

from token_estimator import count_cjk

SESSION_GAP = timedelta(minutes=30)
MIN_SESSION_MINUTES = 1.0

EMPTY_MESSAGE_MINUTES = 0.5

# chars per minute
TYPING_CJK_SPEED = 60
TYPING_OTHER_SPEED = 200
READING_CJK_SPEED = 400
READING_OTHER_SPEED = 800

MIN_TYPING_MINUTES = 0.25
MIN_READING_MINUTES = 0.1


class TimedMessage(NamedTuple):
    """A message reduced to what duration estimation needs."""

    instant: datetime
    text: str
    is_user: bool


def round_half_up(value: float) -> int:
    """Round to the nearest int, with .5 going up rather than to even."""
    return math.floor(value + 0.5)


def interaction_minutes(text: str, is_user: bool) -> float:
    """Estimate the minutes spent typing (user) or reading (reply) *text*."""
    if not text:
        return EMPTY_MESSAGE_MINUTES

    cjk, other = count_cjk(text)
    if is_user:
        minutes = cjk / TYPING_CJK_SPEED + other / TYPING_OTHER_SPEED
        return max(MIN_TYPING_MINUTES, minutes)
    minutes = cjk / READING_CJK_SPEED + other / READING_OTHER_SPEED
    return max(MIN_READING_MINUTES, minutes)


def session_minutes(messages: Iterable[TimedMessage]) -> int:
    """Estimate the engaged minutes of one day's messages.

    Args:
        messages: The day's messages in any order; they are sorted by
            instant before sessions are cut.

    Returns:
        Rounded sum of per-session minutes, each session floored at
        ``MIN_SESSION_MINUTES``.  0 when there are no messages.
    """
    ordered = sorted(messages, key=lambda m: m.instant)
    if not ordered:
        return 0

    total = 0.0
    current = 0.0
    previous = ordered[0].instant
    for msg in ordered:
        if msg.instant - previous > SESSION_GAP:
            total += max(MIN_SESSION_MINUTES, current)
            current = 0.0
        current += interaction_minutes(msg.text, msg.is_user)
        previous = msg.instant
    total += max(MIN_SESSION_MINUTES, current)

    return round_half_up(total)


def estimate_daily_durations(
    messages_by_day: dict[str, list[TimedMessage]],
) -> dict[str, int]:
    """Map each calendar-day key to its estimated engaged minutes."""
    return {
        day: session_minutes(messages)
        for day, messages in sorted(messages_by_day.items())
        if messages
    }
