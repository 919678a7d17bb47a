"""
Tests for the HTTP routes.

Tests cover:
1. 503 when the system is not initialized or the snapshot is unavailable
2. Simulate → evaluate → complete round through the routes
"""
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from questline.api.server import app, set_system_ref
from questline.core.config import Config
from questline.core.events import EventBus
from questline.storage.database import Database
from questline.system.progression import ProgressionService


def make_system(db):
    return SimpleNamespace(
        config=Config(),
        running=True,
        start_time=datetime.now(),
        db=db,
        progression=ProgressionService(db, EventBus()),
    )


@pytest.fixture
def client_and_db(db_path):
    db = Database(db_path)
    with TestClient(app) as client:
        client.portal.call(db.connect)
        set_system_ref(make_system(db))
        yield client, db
        set_system_ref(None)
        client.portal.call(db.close)


class TestNotReady:

    def test_status_before_start(self):
        set_system_ref(None)
        with TestClient(app) as client:
            resp = client.get("/api/status")

        assert resp.status_code == 503
        assert "error" in resp.json()

    def test_evaluate_with_unavailable_snapshot(self):
        set_system_ref(make_system(Database(":memory:")))
        try:
            with TestClient(app) as client:
                resp = client.post("/api/users/alice/evaluate")
        finally:
            set_system_ref(None)

        assert resp.status_code == 503
        assert "alice" in resp.json()["error"]


class TestRoutes:
    """Tests for the user routes"""

    def test_status(self, client_and_db):
        client, _ = client_and_db

        data = client.get("/api/status").json()

        assert data["system"]["name"] == "Questline"
        assert data["system"]["running"] is True
        assert data["channel"]["path"] == "socket.io"

    def test_simulate_awards_badges(self, client_and_db):
        client, _ = client_and_db

        resp = client.post("/api/users/alice/simulate", json={
            "sessions": [{"duration": 3000, "startTime": "2024-05-01T07:00:00"}],
            "tasks": 10,
        })

        data = resp.json()
        assert resp.status_code == 200
        assert data["simulated"] is True
        assert {b["type"] for b in data["newBadges"]} == {"first-focus", "task-slayer", "deep-diver", "early-bird"}
        tasks = next(q for q in data["quests"] if q["id"] == "tasks-10")
        assert tasks["status"] == "completed"

    def test_invalid_simulation(self, client_and_db):
        client, _ = client_and_db

        resp = client.post("/api/users/alice/simulate", json={"sessions": [{"startTime": "yesterday"}]})

        assert resp.status_code == 400

    def test_complete_banks_and_hides_quest(self, client_and_db):
        client, _ = client_and_db
        client.post("/api/users/alice/simulate", json={"tasks": 10})

        settled = client.post("/api/users/alice/quests/complete", json={"questIds": ["tasks-10"]}).json()
        again = client.post("/api/users/alice/quests/complete", json={"questIds": ["tasks-10"]}).json()
        quests = client.get("/api/users/alice/quests").json()

        assert settled["banked"] == ["tasks-10"]
        assert settled["xpGained"] == 50
        assert again["banked"] == []
        assert again["totalXp"] == 50
        assert "tasks-10" not in [q["id"] for q in quests["quests"]]
        assert quests["completedIds"] == ["tasks-10"]

    def test_complete_rejects_unfinished_quest(self, client_and_db):
        client, _ = client_and_db
        client.post("/api/users/alice/simulate", json={"tasks": 3})

        settled = client.post(
            "/api/users/alice/quests/complete", json={"questIds": ["tasks-10", "typo-quest"]},
        ).json()
        quests = client.get("/api/users/alice/quests").json()

        assert settled["banked"] == []
        assert settled["rejected"] == ["tasks-10", "typo-quest"]
        assert settled["totalXp"] == 0
        assert "tasks-10" in [q["id"] for q in quests["quests"]]
        assert quests["completedIds"] == []

    def test_complete_requires_list(self, client_and_db):
        client, _ = client_and_db

        resp = client.post("/api/users/alice/quests/complete", json={"questIds": "tasks-10"})

        assert resp.status_code == 400

    def test_badge_catalogue(self, client_and_db):
        client, _ = client_and_db
        client.post("/api/users/alice/simulate", json={"mentorChats": 1})

        data = client.get("/api/users/alice/badges").json()

        assert data["unlocked"] == 1
        assert [b["type"] for b in data["held"]] == ["mentor-buddy"]
