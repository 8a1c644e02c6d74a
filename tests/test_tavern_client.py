"""Tests for tavern_client.py with a fake requests session."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from helpers import make_header, make_raw_message
from tavern_client import CancelToken, FetchCancelled, TavernAPIError, TavernClient


def _response(status: int = 200, payload: object = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = "error" if status >= 400 else ""
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


class FakeHost:
    """Routes POSTs to canned responses keyed by endpoint and body."""

    def __init__(self, characters=None, chat_lists=None, bodies=None, failing=()):
        self.characters = characters or []
        self.chat_lists = chat_lists or {}
        self.bodies = bodies or {}
        self.failing = set(failing)
        self.calls: list[tuple[str, dict]] = []

    def post(self, url, headers=None, json=None, timeout=None):
        path = url.split("://", 1)[-1].split("/", 1)[1]
        self.calls.append((path, json))
        if path == "api/characters/all":
            return _response(payload=self.characters)
        if path == "api/chats/search":
            avatar = json["avatar_url"]
            if avatar in self.failing:
                return _response(500)
            return _response(payload=self.chat_lists.get(avatar, []))
        if path == "api/chats/get":
            name = json["file_name"]
            if name in self.failing:
                return _response(500)
            return _response(payload=self.bodies.get(name, []))
        return _response(404)


def _body(*dates):
    return [make_header()] + [make_raw_message(d) for d in dates]


def _client(host: FakeHost, **kwargs) -> TavernClient:
    session = MagicMock()
    session.post.side_effect = host.post
    return TavernClient(base_url="http://tavern.local/", session=session, **kwargs)


class TestRequests:
    def test_csrf_header_sent(self):
        session = MagicMock()
        session.post.return_value = _response(payload=[])
        TavernClient("http://tavern.local", csrf_token="tok", session=session).search_chats("a.png")
        headers = session.post.call_args.kwargs["headers"]
        assert headers["X-CSRF-Token"] == "tok"

    def test_error_status_raises(self):
        with pytest.raises(TavernAPIError):
            _client(FakeHost(failing={"a.png"})).search_chats("a.png")

    def test_invalid_json_raises(self):
        session = MagicMock()
        session.post.return_value = _response(payload=ValueError("bad json"))
        with pytest.raises(TavernAPIError):
            TavernClient("http://tavern.local", session=session).list_characters()

    def test_connection_error_raises(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TavernAPIError):
            TavernClient("http://tavern.local", session=session).list_characters()

    def test_get_chat_strips_suffix(self):
        host = FakeHost(bodies={"chat1": _body("2024-01-15 10:00")})
        messages = _client(host).get_chat("a.png", "chat1.jsonl")
        assert len(messages) == 2
        assert host.calls[-1][1]["file_name"] == "chat1"

    def test_wrapped_chat_list(self):
        host = FakeHost(chat_lists={"a.png": {"results": [{"file_name": "c.jsonl"}]}})
        assert _client(host).search_chats("a.png") == [{"file_name": "c.jsonl"}]


class TestFetchCharacterChats:
    def test_fetches_and_normalizes(self):
        host = FakeHost(
            chat_lists={"a.png": [{"file_name": "c1.jsonl"}, {"file_name": "c2.jsonl"}]},
            bodies={"c1": _body("2024-01-15 10:00", "2024-01-15 10:01"), "c2": _body("2024-01-16 10:00")},
        )
        chats = _client(host).fetch_character_chats("a.png", "Seraphina")
        assert [c.file_name for c in chats] == ["c1", "c2"]
        assert all(c.character_name == "Seraphina" for c in chats)
        assert [len(c.messages) for c in chats] == [2, 1]

    def test_single_failure_does_not_abort_batch(self):
        host = FakeHost(
            chat_lists={"a.png": [{"file_name": f"c{i}.jsonl"} for i in range(5)]},
            bodies={f"c{i}": _body("2024-01-15 10:00") for i in range(5)},
            failing={"c2"},
        )
        chats = _client(host, batch_size=2).fetch_character_chats("a.png")
        assert [c.file_name for c in chats] == ["c0", "c1", "c3", "c4"]

    def test_progress_reported_per_batch(self):
        host = FakeHost(chat_lists={"a.png": [{"file_name": f"c{i}.jsonl"} for i in range(5)]})
        progress = []
        _client(host, batch_size=2).fetch_character_chats("a.png", on_progress=lambda d, t: progress.append((d, t)))
        assert progress == [(0, 5), (2, 5), (4, 5), (5, 5)]

    def test_listing_failure_raises(self):
        with pytest.raises(TavernAPIError):
            _client(FakeHost(failing={"a.png"})).fetch_character_chats("a.png")

    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        host = FakeHost()
        with pytest.raises(FetchCancelled):
            _client(host).fetch_character_chats("a.png", cancel=token)
        assert host.calls == []

    def test_cancel_mid_fetch_discards_partial_results(self):
        host = FakeHost(chat_lists={"a.png": [{"file_name": f"c{i}.jsonl"} for i in range(4)]})
        token = CancelToken()

        def on_progress(done, total):
            if done == 2:
                token.cancel()

        with pytest.raises(FetchCancelled):
            _client(host, batch_size=2).fetch_character_chats("a.png", on_progress=on_progress, cancel=token)
        fetched = sorted(body["file_name"] for path, body in host.calls if path == "api/chats/get")
        assert fetched == ["c0", "c1"]


class TestFetchAllChats:
    def test_stamps_character_names(self):
        host = FakeHost(
            characters=[{"name": "Seraphina", "avatar": "s.png"}, {"name": "Aqua", "avatar": "a.png"}],
            chat_lists={"s.png": [{"file_name": "s1.jsonl"}], "a.png": [{"file_name": "a1.jsonl"}]},
            bodies={"s1": _body("2024-01-15 10:00"), "a1": _body("2024-01-16 10:00")},
        )
        chats = _client(host).fetch_all_chats()
        assert [(c.file_name, c.character_name) for c in chats] == [("s1", "Seraphina"), ("a1", "Aqua")]

    def test_failing_character_skipped(self):
        host = FakeHost(
            characters=[{"name": "Bad", "avatar": "bad.png"}, {"name": "Aqua", "avatar": "a.png"}],
            chat_lists={"a.png": [{"file_name": "a1.jsonl"}]},
            failing={"bad.png"},
        )
        chats = _client(host).fetch_all_chats()
        assert [c.character_name for c in chats] == ["Aqua"]

    def test_character_without_avatar_skipped(self):
        host = FakeHost(characters=[{"name": "NoAvatar"}])
        progress = []
        assert _client(host).fetch_all_chats(on_progress=lambda d, t: progress.append((d, t))) == []
        assert progress == [(1, 1)]

    def test_no_characters(self):
        assert _client(FakeHost()).fetch_all_chats() == []

    def test_cancel_propagates(self):
        host = FakeHost(characters=[{"name": "A", "avatar": "a.png"}, {"name": "B", "avatar": "b.png"}])
        token = CancelToken()
        with pytest.raises(FetchCancelled):
            _client(host).fetch_all_chats(on_progress=lambda d, t: token.cancel(), cancel=token)
