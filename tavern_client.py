"""Thin client for the host application's chat endpoints."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import requests

from analyzer import Chat, normalize_chat, normalize_chat_list, normalize_messages
from config import BATCH_SIZE, REQUEST_TIMEOUT, TAVERN_CSRF_TOKEN, TAVERN_URL

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class TavernAPIError(RuntimeError):
    """Raised when the host returns an error or an unreadable body."""


class FetchCancelled(Exception):
    """Raised when a fetch is cancelled; partial results are discarded."""


class CancelToken:
    """Cooperative cancellation flag shared between caller and fetcher."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled("Operation cancelled")


class TavernClient:
    def __init__(
        self,
        base_url: str = TAVERN_URL,
        csrf_token: str = TAVERN_CSRF_TOKEN,
        timeout: float = REQUEST_TIMEOUT,
        batch_size: int = BATCH_SIZE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.csrf_token = csrf_token
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self.session = session or requests.Session()

    def _post(self, path: str, body: dict) -> object:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        if self.csrf_token:
            headers["X-CSRF-Token"] = self.csrf_token
        logger.debug("POST %s", url)
        try:
            resp = self.session.post(url, headers=headers, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TavernAPIError(f"Request to {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise TavernAPIError(f"{resp.status_code} from {path}: {resp.text}")
        try:
            return resp.json()
        except ValueError as exc:
            raise TavernAPIError(f"Invalid JSON from {path}") from exc

    def list_characters(self) -> list[dict]:
        payload = self._post("/api/characters/all", {})
        return [c for c in payload if isinstance(c, dict)] if isinstance(payload, list) else []

    def search_chats(self, avatar_url: str) -> list[dict]:
        payload = self._post("/api/chats/search", {"avatar_url": avatar_url, "query": ""})
        return [c for c in normalize_chat_list(payload) if isinstance(c, dict)]

    def get_chat(self, avatar_url: str, file_name: str) -> list:
        name = file_name[: -len(".jsonl")] if file_name.endswith(".jsonl") else file_name
        payload = self._post("/api/chats/get", {"avatar_url": avatar_url, "file_name": name})
        return normalize_messages(payload)

    def _fetch_one(
        self,
        avatar_url: str,
        chat_meta: dict,
        character_name: str | None,
        cancel: CancelToken,
    ) -> Chat | None:
        if cancel.cancelled:
            return None
        file_name = str(chat_meta.get("file_name", ""))
        try:
            messages = self.get_chat(avatar_url, file_name)
        except TavernAPIError as exc:
            logger.warning("Failed to fetch content for %s: %s", file_name, exc)
            return None

        metadata = dict(chat_meta)
        if character_name:
            metadata["character_name"] = character_name
        return normalize_chat({"metadata": metadata, "messages": messages})

    def fetch_character_chats(
        self,
        avatar_url: str,
        character_name: str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Chat]:
        """Fetch and normalize every chat of one character.

        Chat bodies are fetched concurrently in batches of
        ``batch_size``.  A chat whose body cannot be fetched is logged and
        left out; the rest of the batch still counts.

        Args:
            avatar_url: The character's avatar file name, which the host
                uses as its identifier.
            character_name: Name stamped onto each chat's metadata.
            on_progress: Called with (processed, total) after each batch.
            cancel: Token checked before and after each batch.

        Returns:
            List of normalized chats.

        Raises:
            TavernAPIError: If the chat listing itself fails.
            FetchCancelled: If *cancel* fires before the fetch completes.
        """
        cancel = cancel or CancelToken()
        cancel.raise_if_cancelled()

        chat_list = self.search_chats(avatar_url)
        total = len(chat_list)
        logger.info("Found %d chat files for %s", total, avatar_url)
        if on_progress:
            on_progress(0, total)

        chats: list[Chat] = []
        processed = 0
        with ThreadPoolExecutor(max_workers=min(self.batch_size, 8)) as pool:
            for i in range(0, total, self.batch_size):
                cancel.raise_if_cancelled()
                batch = chat_list[i:i + self.batch_size]
                results = list(pool.map(
                    lambda meta: self._fetch_one(avatar_url, meta, character_name, cancel),
                    batch,
                ))
                cancel.raise_if_cancelled()
                chats.extend(chat for chat in results if chat is not None)
                processed += len(batch)
                if on_progress:
                    on_progress(processed, total)

        return chats

    def fetch_all_chats(
        self,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> list[Chat]:
        """Fetch the chats of every character known to the host.

        A character whose listing fails is skipped with a warning.
        *on_progress* is called with (characters_done, characters_total).

        Raises:
            TavernAPIError: If the character list cannot be fetched.
            FetchCancelled: If *cancel* fires before the fetch completes.
        """
        cancel = cancel or CancelToken()
        characters = self.list_characters()
        if not characters:
            logger.warning("No characters found.")
            return []

        logger.info("Fetching chats for %d characters", len(characters))
        chats: list[Chat] = []
        for done, character in enumerate(characters, 1):
            cancel.raise_if_cancelled()
            avatar_url = character.get("avatar")
            if avatar_url:
                try:
                    chats.extend(self.fetch_character_chats(
                        avatar_url, character.get("name"), cancel=cancel,
                    ))
                except TavernAPIError as exc:
                    logger.warning("Error fetching chats for %s: %s", character.get("name"), exc)
            if on_progress:
                on_progress(done, len(characters))

        logger.info("Total chats found across all characters: %d", len(chats))
        return chats
