"""Tests for the FastAPI endpoints (game, chat stream, settings)."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from backend.routes.chat import abandon_turn, start_turn
from conftest import ScriptedLLM
from night_train.engine import GameEngine
from night_train.session import StreamEnd


@pytest.fixture
def client(tmp_path, engine: GameEngine):
    app = create_app(data_dir=tmp_path / "data", engine=engine)
    with TestClient(app) as c:
        yield c


def _sse_events(text: str) -> list:
    events = []
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


# ── state ────────────────────────────────────────────────────


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_get_game(client):
    body = client.get("/api/game").json()
    assert body["scene"]["id"] == "start"
    assert body["state"]["loop"] == 1
    assert len(body["choices"]) == 3
    assert body["ending"] is None


def test_history(client):
    history = client.get("/api/game/history").json()
    assert history[-1]["role"] == "desc"


# ── choices and navigation ───────────────────────────────────


def test_choose(client):
    resp = client.post("/api/game/choices/0")
    assert resp.status_code == 200
    body = resp.json()
    assert body["snapshot"]["scene"]["id"] == "inspector_01"
    assert "scene" in [e["type"] for e in body["events"]]


def test_choose_missing_index(client):
    assert client.post("/api/game/choices/9").status_code == 404


def test_choose_after_ending(client, engine: GameEngine):
    engine.trigger_ending("detained")
    assert client.post("/api/game/choices/0").status_code == 409


def test_navigate(client):
    resp = client.post("/api/game/navigate", json={"direction": "next"})
    assert resp.status_code == 200
    location = next(e for e in resp.json()["events"] if e["type"] == "location")
    assert location["data"]["name"] == "Ticket Inspector"


def test_navigate_bad_direction(client):
    assert client.post("/api/game/navigate", json={"direction": "up"}).status_code == 422


# ── chat ─────────────────────────────────────────────────────


def test_chat_streams_events(client, llm: ScriptedLLM):
    llm.chunks = ["The inspector ", "nods.\n```json\n", '{"effects": {"trust": 5}}\n```']
    resp = client.post("/api/game/chat", json={"message": "Hello?"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")

    events = _sse_events(resp.text)
    assert events[-1] == "[DONE]"
    assert events[-2] == {"type": "done", "data": {"admitted": True, "end": "completed"}}
    narratives = [e["data"]["text"] for e in events[:-1] if e["type"] == "narrative"]
    assert narratives[-1] == "The inspector nods."
    assert client.get("/api/game").json()["state"]["trust"] == 35


def test_chat_not_admitted(client, llm: ScriptedLLM):
    client.post("/api/game/chat", json={"message": "one"})
    events = _sse_events(client.post("/api/game/chat", json={"message": "two"}).text)
    assert events[-2]["data"]["admitted"] is False
    assert len(llm.payloads) == 1


async def test_abandoned_turn_is_cancelled(engine: GameEngine, llm: ScriptedLLM):
    llm.chunks = ["Half a thought"]
    llm.hang_after = 1
    await engine.start()
    task = start_turn(engine, "Hello?")
    await asyncio.sleep(0.05)
    abandon_turn(engine, task)
    outcome = await asyncio.wait_for(task, 1)
    assert outcome.end == StreamEnd.CANCELLED
    assert llm.closed
    assert engine.sessions.current is None
    assert engine.input_enabled


async def test_failed_turn_is_logged(engine: GameEngine, monkeypatch, caplog):
    async def broken(text):
        raise RuntimeError("narrator exploded")

    monkeypatch.setattr(engine, "submit_chat", broken)
    task = start_turn(engine, "Hello?")
    with pytest.raises(RuntimeError):
        await task
    await asyncio.sleep(0)
    assert "Dialogue turn failed" in caplog.text


# ── lifecycle ────────────────────────────────────────────────


def test_new_game(client):
    client.post("/api/game/choices/0")
    body = client.post("/api/game/new").json()
    assert body["snapshot"]["state"]["trust"] == 30
    assert body["snapshot"]["scene"]["id"] == "start"


def test_next_loop(client, engine: GameEngine):
    engine.trigger_ending("awakening")
    body = client.post("/api/game/next-loop").json()
    assert body["snapshot"]["state"]["loop"] == 2
    assert body["snapshot"]["ending"] is None


def test_clear_save(client):
    client.post("/api/game/choices/0")
    body = client.delete("/api/game/save").json()
    assert body["snapshot"]["state"]["scene_count"] == 0


# ── settings ─────────────────────────────────────────────────


def test_settings_round_trip(client, engine: GameEngine):
    assert client.get("/api/settings").json()["max_turns"] == 15
    updated = client.patch("/api/settings", json={"max_turns": 20, "stall_timeout": 5}).json()
    assert updated["max_turns"] == 20
    assert engine.config["max_turns"] == 20
    assert engine.sessions.stall_timeout == 5
    assert client.get("/api/settings").json()["max_turns"] == 20


def test_settings_rejects_bad_types(client, engine: GameEngine):
    resp = client.patch("/api/settings", json={"max_turns": "soon"})
    assert resp.status_code == 422
    assert client.patch("/api/settings", json={"stall_timeout": -1}).status_code == 422
    assert client.patch("/api/settings", json={"random_event_chance": 2}).status_code == 422
    assert engine.config["max_turns"] == 15
    assert client.get("/api/settings").json()["max_turns"] == 15


def test_settings_numeric_strings_are_coerced(client, engine: GameEngine, llm: ScriptedLLM):
    updated = client.patch(
        "/api/settings",
        json={"max_turns": "20", "stall_timeout": "5", "transition_grace": 0, "random_event_chance": 0},
    ).json()
    assert updated["max_turns"] == 20
    assert isinstance(engine.config["max_turns"], int)
    assert engine.sessions.stall_timeout == 5.0

    llm.chunks = ["The lamps flicker."]
    events = _sse_events(client.post("/api/game/chat", json={"message": "Hello?"}).text)
    assert events[-2]["data"] == {"admitted": True, "end": "completed"}
