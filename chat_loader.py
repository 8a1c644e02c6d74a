"""Load chat transcripts straight from the host's on-disk chat store.

The host keeps one directory per character under its chats directory,
each holding ``.jsonl`` files: a header line followed by one message per
line.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from analyzer import Chat, normalize_chat
from tavern_client import CancelToken

logger = logging.getLogger(__name__)


def load_chat_file(path: str | Path, character_name: str | None = None) -> Chat:
    """Load one ``.jsonl`` chat file.

    Args:
        path: Path to the chat file.
        character_name: Fallback character name when the header carries
            none; defaults to the parent directory's name.

    Returns:
        The normalized chat.  Blank lines are ignored.

    Raises:
        FileNotFoundError: If *path* does not exist.
        json.JSONDecodeError: If a line is not valid JSON.
    """
    path = Path(path)
    lines = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                lines.append(json.loads(line))

    header = lines[0] if lines and isinstance(lines[0], dict) else {}
    name = header.get("character_name") or character_name or path.parent.name
    return normalize_chat({
        "metadata": {"file_name": path.name, "character_name": name},
        "messages": lines,
    })


def load_character_chats(
    chats_dir: str | Path,
    character: str,
    cancel: CancelToken | None = None,
) -> list[Chat]:
    """Load every chat file of one character, skipping unreadable files.

    Raises:
        FileNotFoundError: If the character's directory does not exist.
        FetchCancelled: If *cancel* fires before loading completes.
    """
    cancel = cancel or CancelToken()
    char_dir = Path(chats_dir) / character
    if not char_dir.is_dir():
        raise FileNotFoundError(f"No chat directory for {character!r}: {char_dir}")

    chats: list[Chat] = []
    for path in sorted(char_dir.glob("*.jsonl")):
        cancel.raise_if_cancelled()
        try:
            chats.append(load_chat_file(path, character))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable chat file %s: %s", path, exc)
    logger.info("Loaded %d chat files for %s", len(chats), character)
    return chats


def list_characters(chats_dir: str | Path) -> list[str]:
    """Return the character directory names under *chats_dir*, sorted."""
    root = Path(chats_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Chats directory not found: {root}")
    return sorted(p.name for p in root.iterdir() if p.is_dir())


def load_all_chats(chats_dir: str | Path, cancel: CancelToken | None = None) -> list[Chat]:
    """Load the chats of every character under *chats_dir*."""
    chats: list[Chat] = []
    for character in list_characters(chats_dir):
        chats.extend(load_character_chats(chats_dir, character, cancel))
    return chats
