"""API endpoint tests using FastAPI TestClient."""
import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
import main
from main import app, store, registry
from errors import UpstreamProviderFailure
from persistence import UserStatsDocument
from room_state import PlayerState, QuestionRecord
import config


class FakeProvider:
    def __init__(self, questions=None, categories=None, error=None):
        self.questions = questions or []
        self.categories = categories or []
        self.error = error
        self.calls = []

    async def fetch(self, count, categories=None, difficulty=None, question_type="multiple"):
        self.calls.append((count, categories, difficulty, question_type))
        if self.error:
            raise self.error
        return self.questions[:count]

    async def fetch_categories(self):
        if self.error:
            raise self.error
        return self.categories


@pytest.fixture(autouse=True)
def clear_state():
    """Clear in-memory state before each test."""
    store.clear()
    registry.rooms.clear()
    yield
    store.clear()
    registry.rooms.clear()


client = TestClient(app)


def create_room(name="ROOM1", password="secret", username="Alice"):
    return client.post("/api/rooms/create", json={
        "room_name": name, "password": password, "username": username,
    })


# ---------------------------------------------------------------------------
# Health & Root
# ---------------------------------------------------------------------------

class TestHealthEndpoints:
    def test_root(self):
        res = client.get("/")
        assert res.status_code == 200
        assert "running" in res.json()["message"].lower()

    def test_health(self):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json() == {"status": "healthy", "active_rooms": 0}


# ---------------------------------------------------------------------------
# Room creation / join
# ---------------------------------------------------------------------------

class TestRoomCreate:
    def test_create(self):
        res = create_room(name="room1")
        assert res.status_code == 201
        data = res.json()
        assert data["room_id"] == "ROOM1"
        assert data["host_id"] == "alice"
        assert data["settings"]["question_count"] == config.DEFAULT_QUESTION_COUNT
        assert data["settings"]["categories"] == ["any"]

    def test_password_is_hashed(self):
        create_room(password="secret")
        stored = store.rooms["ROOM1"].password_hash
        assert stored != "secret"
        assert stored.startswith("pbkdf2_sha256$")

    def test_creator_account_created(self):
        create_room(username="Alice")
        assert any(u.username == "alice" for u in store.users.values())

    def test_duplicate_name(self):
        create_room()
        res = create_room(username="bob")
        assert res.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"room_name": "AB", "password": "x", "username": "alice"},
        {"room_name": "ROOM-1", "password": "x", "username": "alice"},
        {"room_name": "ROOM1", "password": "", "username": "alice"},
        {"room_name": "ROOM1", "password": "x", "username": "al"},
        {"room_name": "ROOM1", "password": "x", "username": "a" * 27},
    ])
    def test_invalid_payload(self, payload):
        res = client.post("/api/rooms/create", json=payload)
        assert res.status_code == 422
        assert "ROOM1" not in store.rooms


class TestRoomJoin:
    def test_join(self):
        create_room()
        res = client.post("/api/rooms/join", json={"room_id": "room1", "password": "secret", "username": "Bob"})
        assert res.status_code == 200
        assert res.json()["room_id"] == "ROOM1"
        assert res.json()["host_id"] == "alice"

    def test_wrong_password(self):
        create_room()
        res = client.post("/api/rooms/join", json={"room_id": "ROOM1", "password": "nope", "username": "bob"})
        assert res.status_code == 401

    def test_unknown_room(self):
        res = client.post("/api/rooms/join", json={"room_id": "NOPE1", "password": "x", "username": "bob"})
        assert res.status_code == 404

    def test_live_room_full(self):
        create_room()
        room = registry.get_or_create("ROOM1", store.rooms["ROOM1"])
        room.settings["max_players"] = 2
        for sid, name in (("s1", "alice"), ("s2", "carol")):
            room.players[sid] = PlayerState(sid, name, {"head": "h"})
        res = client.post("/api/rooms/join", json={"room_id": "ROOM1", "password": "secret", "username": "bob"})
        assert res.status_code == 409

    def test_live_settings_returned(self):
        create_room()
        room = registry.get_or_create("ROOM1", store.rooms["ROOM1"])
        room.settings["difficulty"] = "hard"
        res = client.post("/api/rooms/join", json={"room_id": "ROOM1", "password": "secret", "username": "bob"})
        assert res.json()["settings"]["difficulty"] == "hard"


# ---------------------------------------------------------------------------
# Trivia passthrough
# ---------------------------------------------------------------------------

class TestTrivia:
    def test_categories(self, monkeypatch):
        monkeypatch.setattr(main, "question_provider",
                            FakeProvider(categories=[{"id": 9, "name": "General Knowledge"}]))
        res = client.get("/api/categories")
        assert res.status_code == 200
        assert res.json() == [{"id": 9, "name": "General Knowledge"}]

    def test_categories_upstream_down(self, monkeypatch):
        monkeypatch.setattr(main, "question_provider", FakeProvider(error=UpstreamProviderFailure()))
        assert client.get("/api/categories").status_code == 502

    def test_questions(self, monkeypatch):
        provider = FakeProvider(questions=[
            QuestionRecord("Q1?", "A", ["A", "B"], type="boolean", category="Art", difficulty="easy"),
        ])
        monkeypatch.setattr(main, "question_provider", provider)
        res = client.get("/api/questions", params={"amount": 1, "category": "9,25", "difficulty": "easy"})
        assert res.status_code == 200
        assert res.json() == [{
            "question_text": "Q1?", "correct_answer": "A", "options": ["A", "B"],
            "type": "boolean", "category": "Art", "difficulty": "easy",
        }]
        assert provider.calls == [(1, ["9", "25"], "easy", "multiple")]

    def test_questions_bad_amount(self):
        assert client.get("/api/questions", params={"amount": 0}).status_code == 400
        assert client.get("/api/questions", params={"amount": 51}).status_code == 400

    def test_questions_upstream_down(self, monkeypatch):
        monkeypatch.setattr(main, "question_provider", FakeProvider(error=UpstreamProviderFailure()))
        assert client.get("/api/questions").status_code == 502


# ---------------------------------------------------------------------------
# Stats & coins
# ---------------------------------------------------------------------------

class TestStats:
    def test_user_stats(self):
        store.stats["u1"] = UserStatsDocument(user_id="u1", total_wins=3, total_questions=5)
        res = client.get("/api/stats/u1")
        assert res.status_code == 200
        assert res.json()["total_wins"] == 3

    def test_user_stats_missing(self):
        assert client.get("/api/stats/nobody").status_code == 404

    def test_global_top_sorted_by_wins(self):
        for uid, wins in (("u1", 2), ("u2", 9), ("u3", 5)):
            store.stats[uid] = UserStatsDocument(user_id=uid, total_wins=wins)
        res = client.get("/api/stats/global/top")
        assert [s["user_id"] for s in res.json()] == ["u2", "u3", "u1"]

    def test_coins(self):
        create_room(username="Alice")
        res = client.get("/api/users/ALICE/coins")
        assert res.status_code == 200
        assert res.json() == {"username": "alice", "coins": 0}

    def test_coins_unknown_user(self):
        assert client.get("/api/users/ghost/coins").status_code == 404


# ---------------------------------------------------------------------------
# User preferences
# ---------------------------------------------------------------------------

class TestUserSettings:
    def test_missing(self):
        res = client.get("/api/settings/u1")
        assert res.status_code == 404

    def test_put_creates_with_defaults(self):
        res = client.put("/api/settings/u1", json={"theme": "light"})
        assert res.status_code == 200
        data = res.json()
        assert data["user_id"] == "u1"
        assert data["theme"] == "light"
        assert data["sound_enabled"] is True
        assert data["fast_mode"] is False
        assert data["preferred_language"] == "en"

    def test_put_merges_sent_fields(self):
        client.put("/api/settings/u1", json={"theme": "light", "fast_mode": True})
        client.put("/api/settings/u1", json={"sound_enabled": False})
        data = client.get("/api/settings/u1").json()
        assert data["theme"] == "light"
        assert data["fast_mode"] is True
        assert data["sound_enabled"] is False

    def test_invalid_theme(self):
        res = client.put("/api/settings/u1", json={"theme": "neon"})
        assert res.status_code == 422
        assert "u1" not in store.user_settings
