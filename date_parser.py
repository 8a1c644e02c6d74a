"""Timestamp normalization for chat messages.

Host transcripts carry send dates in several shapes depending on the
version that wrote them: ISO-8601, epoch seconds or milliseconds, the
legacy ``2024-1-5 @14h 30m`` form, a plain local ``2024-01-05 14:30`` and
the human ``January 5, 2024 2:30pm``.  ``parse_date`` folds all of them
into a naive local-time ``datetime``.
"""

from __future__ import annotations

import email.utils
import math
import re
from datetime import date, datetime

_DIGITS_RE = re.compile(r"^\d+$")

_LEGACY_RE = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})\s*@(\d{1,2})h\s*(\d{1,2})m"
    r"(?:\s*(\d{1,2})s)?(?:\s*(\d{1,3})ms)?$"
)

_LOCAL_RE = re.compile(
    r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?$"
)

# RFC 2822 parsing would silently drop a trailing am/pm
_MERIDIEM_RE = re.compile(r"\d\s*[ap]m\b", re.IGNORECASE)

_HUMAN_RE = re.compile(
    r"([A-Za-z]+)\s+(\d{1,2}),?\s+(\d{4})\s+(\d{1,2}):(\d{2})\s*(am|pm)",
    re.IGNORECASE,
)

_MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11,
    "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7,
    "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# Epoch values below this are seconds, at or above are milliseconds
_MS_THRESHOLD = 10**12


def _to_local_naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


def _from_epoch(value: float) -> datetime | None:
    if not math.isfinite(value):
        return None
    if abs(value) < _MS_THRESHOLD:
        value *= 1000
    try:
        return datetime.fromtimestamp(value / 1000)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_generic(text: str) -> datetime | None:
    try:
        return _to_local_naive(datetime.fromisoformat(text))
    except (ValueError, OverflowError, OSError):
        pass
    if _MERIDIEM_RE.search(text):
        return None
    try:
        return _to_local_naive(email.utils.parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError, OverflowError, OSError):
        return None


def _parse_legacy(text: str) -> datetime | None:
    match = _LEGACY_RE.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second, millis = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute),
            int(second or 0), int(millis or 0) * 1000,
        )
    except ValueError:
        return None


def _parse_local(text: str) -> datetime | None:
    match = _LOCAL_RE.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second = match.groups()
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second or 0),
        )
    except ValueError:
        return None


def _parse_human(text: str) -> datetime | None:
    match = _HUMAN_RE.search(text)
    if not match:
        return None
    month_name, day, year, hour, minute, meridiem = match.groups()
    month = _MONTHS.get(month_name.lower())
    if month is None:
        return None

    hour_24 = int(hour)
    meridiem = meridiem.lower()
    if meridiem == "pm" and hour_24 < 12:
        hour_24 += 12
    if meridiem == "am" and hour_24 == 12:
        hour_24 = 0

    try:
        return datetime(int(year), month, int(day), hour_24, int(minute))
    except ValueError:
        return None


def parse_date(raw: object) -> datetime | None:
    """Parse a message send date into a naive local-time datetime.

    Attempts, in order: ISO-8601 / RFC 2822, bare epoch integers (seconds
    below 10**12, milliseconds otherwise), the legacy ``@HHh MMm`` form,
    ``YYYY-MM-DD HH:mm[:ss]`` and ``Month DD, YYYY HH:MM am|pm``.

    Args:
        raw: The raw ``send_date`` value: a string, an int or float
            epoch, or None.

    Returns:
        The parsed datetime in local time, or None when nothing matches.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return _from_epoch(float(raw))
        except OverflowError:
            return None
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text:
        return None

    # ISO basic dates like 20240115 would otherwise shadow epoch values
    if _DIGITS_RE.match(text):
        return _from_epoch(float(text))

    for attempt in (_parse_generic, _parse_legacy, _parse_local, _parse_human):
        parsed = attempt(text)
        if parsed is not None:
            return parsed
    return None


def day_key(dt: datetime) -> str:
    """Return the local calendar-day key (YYYY-MM-DD) of *dt*."""
    return f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"


def parse_day_key(key: str) -> date:
    """Parse a YYYY-MM-DD calendar-day key.

    Raises:
        ValueError: If *key* is not a valid ISO calendar date.
    """
    return date.fromisoformat(key)
