"""Shared test helpers for chat statistics tests.

Regular functions (not fixtures) that can be imported by any test module.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from analyzer import Chat, Message


def fmt(dt: datetime) -> str:
    """Format *dt* in the host's local ``YYYY-MM-DD HH:mm:ss`` form."""
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def make_message(
    when: datetime | str | None,
    text: str = "hello",
    is_user: bool = True,
    model: str | None = None,
    token_count: int | None = None,
) -> Message:
    send_date = fmt(when) if isinstance(when, datetime) else when
    return Message(
        text=text, is_user=is_user, send_date=send_date, model=model, token_count=token_count,
    )


def make_chat(
    file_name: str,
    messages: list[Message],
    character_name: str = "Seraphina",
) -> Chat:
    return Chat(file_name=file_name, character_name=character_name, messages=tuple(messages))


def make_dialogue(
    file_name: str,
    start: datetime,
    turns: int,
    step_minutes: int = 2,
    character_name: str = "Seraphina",
) -> Chat:
    """Build a chat of *turns* alternating user/AI messages *step_minutes* apart."""
    messages = [
        make_message(
            start + timedelta(minutes=i * step_minutes),
            text=f"turn {i}",
            is_user=i % 2 == 0,
            model=None if i % 2 == 0 else "gpt-4o",
        )
        for i in range(turns)
    ]
    return make_chat(file_name, messages, character_name)


def make_raw_message(
    send_date: object,
    mes: object = "hello",
    is_user: bool = True,
    extra: dict | None = None,
) -> dict:
    """Build a message dict in the host's transcript format."""
    raw = {"name": "User" if is_user else "Seraphina", "is_user": is_user,
           "send_date": send_date, "mes": mes}
    if extra is not None:
        raw["extra"] = extra
    return raw


def make_header(character_name: str = "Seraphina") -> dict:
    return {
        "user_name": "User",
        "character_name": character_name,
        "create_date": "2024-01-15@10h00m00s",
        "chat_metadata": {},
    }
