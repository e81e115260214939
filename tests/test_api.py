from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from tiltwatch.models import to_ms
from tiltwatch.store import Store


T0 = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def env(tmp_path, monkeypatch):
    db = tmp_path / "tw.db"
    monkeypatch.setenv("TILTWATCH_DB_PATH", str(db))
    monkeypatch.setenv("TILTWATCH_PREWARM", "0")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    store = Store(db_path=str(db))
    for i, r in enumerate(["WIN", "LOSS", "LOSS"]):
        store.upsert_match(f"c{i}", "alice", "cs2", None, to_ms(T0 + timedelta(minutes=10 * i)), r, 600)
    store.upsert_match("v0", "alice", "valorant", None, to_ms(T0 + timedelta(hours=3)), "WIN", 900)
    return store


@pytest.fixture
def client(env):
    from backend.server.app import create_app

    return TestClient(create_app())


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["data"]["db"]["ok"] is True
    assert body["data"]["db"]["users"] == 1
    assert r.headers["cache-control"] == "no-store"


def test_insights_overall_and_by_game(client):
    body = client.get("/api/session-insights/alice").json()
    assert body["ok"] is True
    data = body["data"]
    assert data["overall"]["total_matches_analyzed"] == 4
    assert set(data["by_game"]) == {"cs2", "valorant"}
    assert data["by_game"]["cs2"]["tilt"]["current_loss_streak"] == 2


def test_insights_single_game(client):
    data = client.get("/api/session-insights/alice", params={"game": "cs2", "refresh": True}).json()["data"]
    assert data["game"] == "cs2"
    assert data["insights"]["total_sessions_analyzed"] == 1
    assert data["insights"]["recent_sessions"][0]["loss_count"] == 2


def test_current_session_endpoint(client):
    data = client.get("/api/session-insights/alice/current").json()["data"]
    # the fixture matches are far in the past
    assert data == {"in_session": False, "session": None}


def test_refresh_endpoint(client):
    data = client.post("/api/session-insights/alice/refresh").json()["data"]
    assert data["new_sessions_detected"] == 2
    again = client.post("/api/session-insights/alice/refresh").json()["data"]
    assert again["new_sessions_detected"] == 0


def test_tilt_status_and_summary(client):
    status = client.get("/api/session-insights/alice/tilt-status", params={"game": "cs2"}).json()["data"]
    assert status["current_loss_streak"] == 2
    assert status["alert"]["should_take_break"] is False

    summary = client.get("/api/session-insights/alice/performance-summary").json()["data"]
    assert summary["total_matches_analyzed"] == 4
    assert isinstance(summary["recommendations"], list)


def test_aggregate_endpoint(client):
    assert client.get("/api/session-insights/alice/aggregate").status_code == 404
    client.get("/api/session-insights/alice")
    r = client.get("/api/session-insights/alice/aggregate", params={"game": "valorant"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["game"] == "valorant"
    assert data["buckets"]["morning"]["total"] == 1


def test_prewarm_refreshes_stale_aggregates(env):
    from backend.server.cron.prewarm import run_once

    now = T0 + timedelta(days=1)
    # cross-game scope plus one per game
    assert run_once(env, now=now) == 3
    assert run_once(env, now=now + timedelta(hours=1)) == 0
    assert run_once(env, now=now + timedelta(hours=7)) == 3


def test_router_functions_directly(env):
    from backend.server.routers import sessions as r

    out = r.tilt_status("alice", game="valorant")
    assert out["ok"] is True
    assert out["data"]["current_loss_streak"] == 0
    assert out["data"]["tilt_threshold"] is None

    cur = r.current_session("nobody", game=None)
    assert cur["data"]["in_session"] is False
