"""Tests for night_train.thoughts and night_train.knowledge."""

from night_train.knowledge import known_facts, npc_gender, npc_label
from night_train.models import WorldState
from night_train.thoughts import current_thoughts


def _ids(state: WorldState) -> list[str]:
    return [t["id"] for t in current_thoughts(state)]


def test_fresh_game_thoughts():
    assert _ids(WorldState()) == ["goal1", "explore", "talk", "destination"]


def test_danger_thoughts():
    ids = _ids(WorldState(stability=40, noise=70, scene_count=5, turn_count=5))
    assert "stability_warn" in ids
    assert "noise_warn" in ids
    assert "explore" not in ids


def test_later_loop_thoughts():
    ids = _ids(WorldState(loop=2, scene_count=1, turn_count=9))
    assert ids[:2] == ["explore", "loop_memory"]
    assert "loop_differ" in ids
    assert "goal1" not in ids


def test_location_hint():
    state = WorldState(current_scene_id="inspector_area", scene_count=9, turn_count=9)
    assert "inspector_hint" in _ids(state)
    state.flags["met_inspector"] = True
    assert "inspector_hint" not in _ids(state)


def test_known_facts_only_truthy_known_flags():
    state = WorldState(flags={"saw_note": True, "has_note": False, "custom": True})
    assert known_facts(state) == ["The player spotted a hidden note."]


def test_npc_profiles():
    assert npc_label("silent") == "Silent Passenger"
    assert npc_gender("silent") == "female"
    assert npc_label("none") == ""
    assert npc_label(None) == ""
    assert npc_label("conductor") == "conductor"
    assert npc_gender("conductor") == "unknown"
