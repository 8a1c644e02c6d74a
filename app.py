"""FastAPI service for tavern chat statistics.

Serves statistics snapshots as JSON, cached per subject and date range
until a refresh is requested.

Deployment: uvicorn app:app --host 127.0.0.1 --port 8204
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException

from analyzer import (
    Chat,
    DateRange,
    DateBounds,
    InvalidDateRangeError,
    build_snapshot,
    validate_date_range,
)
from config import ALL_SUBJECTS, CACHE_FILE
from stats_cache import CacheEntry, StatsCache, make_cache_key
from tavern_client import CancelToken, FetchCancelled, TavernAPIError, TavernClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# In-flight fetches
# ---------------------------------------------------------------------------


class InFlightRegistry:
    """One cancellable fetch per subject; a new one supersedes the old."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, CancelToken] = {}

    def begin(self, subject_id: str) -> CancelToken:
        token = CancelToken()
        with self._lock:
            previous = self._tokens.get(subject_id)
            self._tokens[subject_id] = token
        if previous is not None:
            logger.info("Cancelling superseded fetch for %s", subject_id)
            previous.cancel()
        return token

    def finish(self, subject_id: str, token: CancelToken) -> None:
        with self._lock:
            if self._tokens.get(subject_id) is token:
                del self._tokens[subject_id]

    def cancel(self, subject_id: str) -> bool:
        with self._lock:
            token = self._tokens.pop(subject_id, None)
        if token is None:
            return False
        token.cancel()
        return True


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
def load_cache(path: Optional[Path]) -> StatsCache:
    """Load the persisted cache, starting empty if it is missing or corrupt."""
    if path is None:
        return StatsCache()
    try:
        return StatsCache.load(path)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable stats cache %s: %s", path, exc)
    except OSError as exc:
        logger.warning("Could not read stats cache %s: %s", path, exc)
    return StatsCache()


app = FastAPI(title="Tavern Chat Statistics")
app.state.cache = load_cache(CACHE_FILE)
app.state.in_flight = InFlightRegistry()


def fetch_chats(subject_id: str, cancel: CancelToken) -> list[Chat]:
    """Retrieve the chats of one character, or of all of them."""
    client = TavernClient()
    if subject_id == ALL_SUBJECTS:
        return client.fetch_all_chats(cancel=cancel)
    return client.fetch_character_chats(subject_id, cancel=cancel)


def _persist(cache: StatsCache) -> None:
    if CACHE_FILE is None:
        return
    try:
        cache.save(CACHE_FILE)
    except OSError as exc:
        logger.warning("Could not persist stats cache to %s: %s", CACHE_FILE, exc)


def _get_stats(
    subject_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    force_refresh: bool = False,
) -> tuple[str, dict[str, Any]]:
    """Return (cache_key, snapshot dict), computing it on a cache miss."""
    date_range = DateRange(start=start or None, end=end or None)
    try:
        validate_date_range(date_range)
    except InvalidDateRangeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    cache: StatsCache = app.state.cache
    key = make_cache_key(subject_id, date_range)
    if not force_refresh:
        entry = cache.get(key)
        if entry is not None:
            logger.debug("Cache hit for %s", key)
            return key, entry.snapshot.to_dict()

    in_flight: InFlightRegistry = app.state.in_flight
    token = in_flight.begin(subject_id)
    try:
        chats = fetch_chats(subject_id, token)
    except FetchCancelled as exc:
        raise HTTPException(status_code=409, detail="Fetch was cancelled") from exc
    except TavernAPIError as exc:
        logger.error("Fetching chats for %s failed: %s", subject_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    finally:
        in_flight.finish(subject_id, token)

    active_range = date_range if date_range.is_active else None
    snapshot = build_snapshot(chats, active_range)
    bounds = DateBounds(**snapshot.meta["date_bounds"])

    if force_refresh and active_range is None:
        cache.invalidate(subject_id)
    cache.put(key, CacheEntry(snapshot=snapshot, date_range=active_range, date_bounds=bounds))
    _persist(cache)
    return key, snapshot.to_dict()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/stats")
def api_all_stats(start: Optional[str] = None, end: Optional[str] = None, refresh: bool = False):
    """Return the snapshot across every character."""
    return _get_stats(ALL_SUBJECTS, start, end, refresh)[1]


@app.get("/api/stats/{subject_id}")
def api_subject_stats(
    subject_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    refresh: bool = False,
):
    """Return the snapshot for one character, keyed by its avatar id."""
    return _get_stats(subject_id, start, end, refresh)[1]


@app.get("/api/refresh/{subject_id}")
def api_refresh(subject_id: str):
    """Force a rebuild of the unfiltered snapshot and drop filtered ones."""
    key, data = _get_stats(subject_id, force_refresh=True)
    return {
        "status": "refreshed",
        "cache_key": key,
        "total_messages": data["overview"]["total_messages"],
    }


@app.delete("/api/stats/{subject_id}/fetch")
def api_cancel(subject_id: str):
    """Cancel the in-flight fetch for a subject, if any."""
    return {"cancelled": app.state.in_flight.cancel(subject_id)}
