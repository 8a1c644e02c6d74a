"""Runtime settings for the chat statistics service and CLI.

Values are plain module constants; the ones that depend on the local
install can be overridden from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Host application
# ---------------------------------------------------------------------------
TAVERN_URL = os.environ.get("TAVERN_URL", "http://127.0.0.1:8000")
TAVERN_CSRF_TOKEN = os.environ.get("TAVERN_CSRF_TOKEN", "")
TAVERN_CHATS_DIR = Path(
    os.environ.get("TAVERN_CHATS_DIR", "data/default-user/chats")
)
REQUEST_TIMEOUT = float(os.environ.get("STATS_REQUEST_TIMEOUT", "30"))

# Chat bodies fetched concurrently per batch
BATCH_SIZE = int(os.environ.get("STATS_BATCH_SIZE", "50"))

# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
UNKNOWN_CHARACTER = "unknown"
ALL_SUBJECTS = "__all__"

# ---------------------------------------------------------------------------
# Cache persistence
# ---------------------------------------------------------------------------
DEFAULT_CACHE_FILE = Path("stats_cache.json")

# The service persists its cache only when this is set
CACHE_FILE = (
    Path(os.environ["STATS_CACHE_FILE"]) if os.environ.get("STATS_CACHE_FILE") else None
)
