"""Shared fixtures for chat statistics tests."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import make_dialogue
from stats_cache import StatsCache


@pytest.fixture()
def two_day_chats():
    """Two chats on consecutive days with four messages each."""
    return [
        make_dialogue("chat-a", datetime(2024, 1, 15, 10, 0), 4),
        make_dialogue("chat-b", datetime(2024, 1, 16, 21, 0), 4, character_name="Aqua"),
    ]


@pytest.fixture()
def fetch_mock(two_day_chats):
    """Patch app.fetch_chats so no host is contacted."""
    with patch("app.fetch_chats", return_value=two_day_chats) as mock_fetch:
        yield mock_fetch


@pytest.fixture()
def client(fetch_mock):
    """TestClient for app.py with a fresh cache and mocked transcripts.

    Swaps in an empty StatsCache per test and restores the original.
    """
    import app as app_module

    original = app_module.app.state.cache
    app_module.app.state.cache = StatsCache()
    try:
        with TestClient(app_module.app) as tc:
            yield tc
    finally:
        app_module.app.state.cache = original
