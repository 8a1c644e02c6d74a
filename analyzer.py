"""Core statistics aggregation for tavern chat transcripts.

Normalizes host transcripts into typed records and folds them into a
``StatisticsSnapshot``.  Used by the web service (app.py), the CLI
(stats_summary.py) and the chart renderer (stats_viz.py).
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, time
from typing import Any, Iterable

from config import UNKNOWN_CHARACTER
from date_parser import day_key, parse_date, parse_day_key
from duration import TimedMessage, estimate_daily_durations, round_half_up
from token_estimator import estimate_tokens

logger = logging.getLogger(__name__)

_RANGE_END_TIME = time(23, 59, 59, 999000)


class InvalidDateRangeError(ValueError):
    """Raised when a user-supplied date range is malformed or inverted."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Message:
    """One chat turn as stored by the host."""

    text: str
    is_user: bool
    send_date: str | int | float | None = None
    model: str | None = None
    token_count: int | None = None


@dataclass(frozen=True)
class Chat:
    """One chat file: its identifier, character and ordered messages."""

    file_name: str
    character_name: str = UNKNOWN_CHARACTER
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day filter; either bound may be open."""

    start: str | None = None
    end: str | None = None

    @property
    def is_active(self) -> bool:
        return bool(self.start or self.end)


@dataclass(frozen=True)
class DateBounds:
    """Earliest and latest calendar days present in a chat set."""

    min: str | None = None
    max: str | None = None


@dataclass
class StatisticsSnapshot:
    """Result of one aggregation pass.

    Day-keyed mappings use local-time ``YYYY-MM-DD`` keys in ascending
    order.  ``meta`` is filled by ``attach_meta`` once, after aggregation.
    """

    total_messages: int = 0
    user_messages: int = 0
    ai_messages: int = 0
    user_char_count: int = 0
    ai_char_count: int = 0
    total_chats: int = 0
    avg_messages_per_chat: int = 0
    max_messages_in_one_chat: int = 0
    ratio: float = 0.0
    first_date: str | None = None
    last_date: str | None = None
    days_active: int = 0
    total_duration_minutes: int = 0
    ai_tokens: int = 0
    user_tokens: int = 0
    models: dict[str, int] = field(default_factory=dict)
    daily_activity: dict[str, int] = field(default_factory=dict)
    daily_file_counts: dict[str, int] = field(default_factory=dict)
    daily_duration: dict[str, int] = field(default_factory=dict)
    hourly_activity: list[int] = field(default_factory=lambda: [0] * 24)
    character_stats: dict[str, int] = field(default_factory=dict)
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize into the nested JSON shape served to renderers."""
        return {
            "overview": {
                "total_messages": self.total_messages,
                "user_messages": self.user_messages,
                "ai_messages": self.ai_messages,
                "user_char_count": self.user_char_count,
                "ai_char_count": self.ai_char_count,
                "total_chats": self.total_chats,
                "avg_messages_per_chat": self.avg_messages_per_chat,
                "max_messages_in_one_chat": self.max_messages_in_one_chat,
                "ratio": self.ratio,
                "first_date": self.first_date,
                "last_date": self.last_date,
                "days_active": self.days_active,
                "total_duration_minutes": self.total_duration_minutes,
            },
            "tokens": {"ai": self.ai_tokens, "user": self.user_tokens},
            "models": dict(self.models),
            "daily_activity": dict(self.daily_activity),
            "daily_file_counts": dict(self.daily_file_counts),
            "daily_duration": dict(self.daily_duration),
            "hourly_activity": list(self.hourly_activity),
            "character_stats": dict(self.character_stats),
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatisticsSnapshot:
        """Rebuild a snapshot from ``to_dict`` output."""
        overview = data.get("overview", {})
        tokens = data.get("tokens", {})
        return cls(
            **overview,
            ai_tokens=tokens.get("ai", 0),
            user_tokens=tokens.get("user", 0),
            models=dict(data.get("models", {})),
            daily_activity=dict(data.get("daily_activity", {})),
            daily_file_counts=dict(data.get("daily_file_counts", {})),
            daily_duration=dict(data.get("daily_duration", {})),
            hourly_activity=list(data.get("hourly_activity", [0] * 24)),
            character_stats=dict(data.get("character_stats", {})),
            meta=data.get("meta"),
        )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

def normalize_chat_list(payload: object) -> list:
    """Return the chat list from a search response of any known shape."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("results", "chats"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def normalize_messages(payload: object) -> list:
    """Return the message list from a chat body of any known shape."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("messages"), list):
        return payload["messages"]
    return []


def _coerce_token_count(value: object) -> int | None:
    """Keep *value* only if it is a finite, non-negative number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return int(value)


def normalize_message(raw: dict) -> Message:
    """Convert one raw host message dict into a ``Message``.

    Args:
        raw: A message dict with ``mes``, ``is_user``, ``send_date`` and an
            optional ``extra`` block carrying ``model`` / ``token_count``.

    Returns:
        The normalized message.  Missing or malformed optional fields
        become None; non-string text becomes an empty string.
    """
    text = raw.get("mes")
    extra = raw.get("extra")
    if not isinstance(extra, dict):
        extra = {}

    model = extra.get("model")
    return Message(
        text=text if isinstance(text, str) else "",
        is_user=raw.get("is_user") is True,
        send_date=raw.get("send_date"),
        model=model if isinstance(model, str) and model else None,
        token_count=_coerce_token_count(extra.get("token_count")),
    )


def _is_header(raw: dict) -> bool:
    # The first line of a .jsonl chat file describes the chat, not a turn
    return "mes" not in raw and ("chat_metadata" in raw or "user_name" in raw)


def normalize_chat(raw: dict) -> Chat:
    """Convert a host transcript ``{metadata, messages}`` into a ``Chat``.

    Args:
        raw: Dict with a ``metadata`` block (``file_name``,
            ``character_name``) and a ``messages`` payload in any shape
            accepted by ``normalize_messages``.

    Returns:
        The normalized chat.  Header lines and non-dict items are dropped.
    """
    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    file_name = str(metadata.get("file_name") or "")
    if file_name.endswith(".jsonl"):
        file_name = file_name[: -len(".jsonl")]

    character_name = metadata.get("character_name")
    if not isinstance(character_name, str) or not character_name:
        character_name = UNKNOWN_CHARACTER

    messages = tuple(
        normalize_message(item)
        for item in normalize_messages(raw.get("messages"))
        if isinstance(item, dict) and not _is_header(item)
    )
    return Chat(file_name=file_name, character_name=character_name, messages=messages)


# ---------------------------------------------------------------------------
# Date range handling
# ---------------------------------------------------------------------------

def validate_date_range(date_range: DateRange | None) -> None:
    """Check a user-supplied range before aggregation runs.

    Raises:
        InvalidDateRangeError: If a bound is not a ``YYYY-MM-DD`` key or
            the start falls after the end.
    """
    if date_range is None:
        return

    parsed = {}
    for name in ("start", "end"):
        value = getattr(date_range, name)
        if not value:
            continue
        try:
            parsed[name] = parse_day_key(value)
        except ValueError as exc:
            raise InvalidDateRangeError(f"Invalid {name} date: {value!r}") from exc

    if "start" in parsed and "end" in parsed and parsed["start"] > parsed["end"]:
        raise InvalidDateRangeError(
            f"Start date {date_range.start} is after end date {date_range.end}"
        )


def _range_bounds(
    date_range: DateRange | None,
) -> tuple[datetime | None, datetime | None]:
    if date_range is None:
        return None, None
    start = (
        datetime.combine(parse_day_key(date_range.start), time.min)
        if date_range.start else None
    )
    end = (
        datetime.combine(parse_day_key(date_range.end), _RANGE_END_TIME)
        if date_range.end else None
    )
    return start, end


def compute_date_bounds(chats: Iterable[Chat]) -> DateBounds:
    """Find the first and last calendar days across all chats, unfiltered."""
    first: datetime | None = None
    last: datetime | None = None
    for chat in chats:
        for msg in chat.messages:
            instant = parse_date(msg.send_date)
            if instant is None:
                continue
            if first is None or instant < first:
                first = instant
            if last is None or instant > last:
                last = instant

    if first is None or last is None:
        return DateBounds()
    return DateBounds(min=day_key(first), max=day_key(last))


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _message_tokens(msg: Message) -> int:
    if msg.token_count is not None:
        return msg.token_count
    return estimate_tokens(msg.text)


def aggregate(
    chats: Iterable[Chat],
    date_range: DateRange | None = None,
) -> StatisticsSnapshot:
    """Fold chats into a single statistics snapshot.

    Messages are filtered by *date_range* when it has a bound; a message
    whose send date cannot be parsed is dropped under an active range but
    counted (outside the day/hour buckets) when there is none.

    Args:
        chats: Normalized chats, typically from ``normalize_chat``.
        date_range: Optional inclusive calendar-day filter.  Callers
            validate it with ``validate_date_range`` first.

    Returns:
        A fresh snapshot.  Empty input yields all-zero counters.
    """
    range_start, range_end = _range_bounds(date_range)
    has_range = range_start is not None or range_end is not None

    snap = StatisticsSnapshot()
    first: datetime | None = None
    last: datetime | None = None
    models: dict[str, int] = defaultdict(int)
    daily_activity: dict[str, int] = defaultdict(int)
    daily_files: dict[str, set[str]] = defaultdict(set)
    characters: dict[str, int] = defaultdict(int)
    messages_by_day: dict[str, list[TimedMessage]] = defaultdict(list)

    for chat in chats:
        in_range_count = 0

        for msg in chat.messages:
            instant = parse_date(msg.send_date)
            if has_range:
                if instant is None:
                    continue
                if range_start is not None and instant < range_start:
                    continue
                if range_end is not None and instant > range_end:
                    continue

            in_range_count += 1
            snap.total_messages += 1

            if instant is not None:
                if first is None or instant < first:
                    first = instant
                if last is None or instant > last:
                    last = instant
                key = day_key(instant)
                daily_activity[key] += 1
                daily_files[key].add(chat.file_name)
                snap.hourly_activity[instant.hour] += 1
                messages_by_day[key].append(TimedMessage(instant, msg.text, msg.is_user))

            if msg.is_user:
                snap.user_messages += 1
                snap.user_char_count += len(msg.text)
            else:
                snap.ai_messages += 1
                snap.ai_char_count += len(msg.text)
                snap.ai_tokens += _message_tokens(msg)
                if msg.model is not None:
                    models[msg.model] += 1

        if in_range_count > 0:
            snap.total_chats += 1
            characters[chat.character_name] += in_range_count
            snap.max_messages_in_one_chat = max(snap.max_messages_in_one_chat, in_range_count)

    # User tokens are a flat estimate over the user character total
    snap.user_tokens = math.ceil(snap.user_char_count / 1.5)
    snap.daily_duration = estimate_daily_durations(messages_by_day)
    snap.total_duration_minutes = sum(snap.daily_duration.values())

    snap.models = dict(sorted(models.items()))
    snap.daily_activity = dict(sorted(daily_activity.items()))
    snap.daily_file_counts = {day: len(files) for day, files in sorted(daily_files.items())}
    snap.character_stats = dict(sorted(characters.items()))

    if snap.total_chats > 0:
        snap.avg_messages_per_chat = round_half_up(snap.total_messages / snap.total_chats)
    if snap.user_messages > 0:
        snap.ratio = round(snap.ai_messages / snap.user_messages, 2)
    if first is not None and last is not None:
        snap.first_date = day_key(first)
        snap.last_date = day_key(last)
        snap.days_active = (last.date() - first.date()).days + 1

    return snap


def attach_meta(
    snapshot: StatisticsSnapshot,
    date_range: DateRange | None,
    date_bounds: DateBounds,
) -> StatisticsSnapshot:
    """Record which filter produced *snapshot* and the selectable bounds."""
    snapshot.meta = {
        "date_range": asdict(date_range) if date_range is not None else None,
        "date_bounds": asdict(date_bounds),
    }
    return snapshot


def build_snapshot(
    chats: list[Chat],
    date_range: DateRange | None = None,
) -> StatisticsSnapshot:
    """Aggregate *chats* and attach range metadata for renderers."""
    snapshot = aggregate(chats, date_range)
    if chats and snapshot.total_messages == 0:
        logger.info(
            "Aggregated %d chats but no messages fell in range %s",
            len(chats), date_range,
        )
    return attach_meta(snapshot, date_range, compute_date_bounds(chats))


def top_days(snapshot: StatisticsSnapshot, key: str = "daily_activity", n: int = 5) -> list[tuple[str, int]]:
    """Return the *n* busiest days of a day-keyed mapping, busiest first.

    Args:
        snapshot: Snapshot to read from.
        key: Name of a day-keyed mapping attribute (``daily_activity``,
            ``daily_duration`` or ``daily_file_counts``).
        n: Number of days to return.

    Returns:
        List of (day_key, value) pairs; ties keep ascending day order.
    """
    mapping: dict[str, int] = getattr(snapshot, key)
    return sorted(mapping.items(), key=lambda item: item[1], reverse=True)[:n]
