"""Keyed store of computed snapshots, one per subject and date range."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from analyzer import DateBounds, DateRange, StatisticsSnapshot
from config import ALL_SUBJECTS

logger = logging.getLogger(__name__)

__all__ = ["ALL_SUBJECTS", "CacheEntry", "StatsCache", "make_cache_key"]


@dataclass
class CacheEntry:
    """A computed snapshot together with the filter that produced it."""

    snapshot: StatisticsSnapshot
    date_range: DateRange | None
    date_bounds: DateBounds

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict(),
            "date_range": asdict(self.date_range) if self.date_range else None,
            "date_bounds": asdict(self.date_bounds),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        date_range = data.get("date_range")
        return cls(
            snapshot=StatisticsSnapshot.from_dict(data["snapshot"]),
            date_range=DateRange(**date_range) if date_range else None,
            date_bounds=DateBounds(**data.get("date_bounds", {})),
        )


def make_cache_key(subject_id: str, date_range: DateRange | None = None) -> str:
    """Build the cache key for a subject, suffixed only when a range is set."""
    if date_range is None or not date_range.is_active:
        return subject_id
    return f"{subject_id}::{date_range.start or ''}~{date_range.end or ''}"


class StatsCache:
    """Thread-safe in-memory map from cache key to ``CacheEntry``.

    Nothing is evicted automatically; callers drop entries on a forced
    refresh.  ``save`` and ``load`` persist the whole map as JSON.
    ``keys``, ``len()`` and ``in`` are for inspection: the CLI logs the
    keys at debug level and the tests check them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, subject_id: str) -> int:
        """Drop every entry of *subject_id*, filtered or not.

        Returns:
            Number of entries removed.
        """
        prefix = f"{subject_id}::"
        with self._lock:
            stale = [k for k in self._entries if k == subject_id or k.startswith(prefix)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def save(self, path: str | Path) -> None:
        """Write all entries to *path* as JSON, creating parent dirs.

        The payload goes to a temporary file in the same directory which
        then replaces *path*, so readers never see a partial file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Writers are serialized so the last snapshot taken is the last written
        with self._save_lock:
            with self._lock:
                payload = {"cache": {k: e.to_dict() for k, e in self._entries.items()}}
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                os.unlink(tmp_name)
                raise
        logger.debug("Saved %d cache entries to %s", len(payload["cache"]), path)

    @classmethod
    def load(cls, path: str | Path) -> StatsCache:
        """Read a cache written by ``save``.

        A missing file yields an empty cache; entries that fail to
        deserialize are skipped with a warning.

        Raises:
            json.JSONDecodeError: If the file is not valid JSON.
        """
        cache = cls()
        path = Path(path)
        if not path.exists():
            return cache

        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        if not isinstance(payload, dict) or not isinstance(payload.get("cache", {}), dict):
            logger.warning("Ignoring stats cache %s with unexpected layout", path)
            return cache

        for key, raw in payload.get("cache", {}).items():
            try:
                cache.put(key, CacheEntry.from_dict(raw))
            except (KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable cache entry %s: %s", key, exc)
        return cache
