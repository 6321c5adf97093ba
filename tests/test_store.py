"""Tests for night_train.store — WorldStore mutations and persistence."""

import random

from night_train.storage import Storage
from night_train.store import WorldStore


def test_mutations_persist_immediately(storage: Storage):
    store = WorldStore(storage)
    store.apply_effects({"noise": 10})
    store.set_flags({"met_inspector": True})
    reloaded = WorldStore(storage).state
    assert reloaded.noise == 10
    assert reloaded.flags == {"met_inspector": True}


def test_enter_scene_dedupes_visited(store: WorldStore):
    store.enter_scene("inspector_01")
    store.enter_scene("start")
    store.enter_scene("inspector_01")
    assert store.state.visited == ["inspector_01", "start"]
    assert store.state.current_scene_id == "inspector_01"


def test_enter_location_does_not_mark_visited(store: WorldStore):
    store.enter_location("corridor")
    assert store.state.current_scene_id == "corridor"
    assert store.state.visited == []


def test_counters(store: WorldStore):
    assert store.bump_scene_count() == 1
    assert store.begin_turn() == 1
    assert store.begin_turn() == 2


def test_history_limit_evicts_oldest(storage: Storage):
    store = WorldStore(storage, history_limit=3)
    for i in range(5):
        store.add_history("user", f"line {i}")
    assert [e.text for e in store.state.history] == ["line 2", "line 3", "line 4"]


def test_history_skips_empty_text(store: WorldStore):
    assert store.add_history("npc", "") is None
    assert store.state.history == []


def test_history_entry_fields(store: WorldStore):
    entry = store.add_history("npc", "Ticket.", "Inspector", "Ticket Inspector")
    assert entry.scene_title == "Inspector"
    assert entry.npc_name == "Ticket Inspector"
    assert entry.ts
    default = store.add_history("desc", "A corridor.")
    assert default.scene_title == "Unknown scene"


def test_advance_loop(store: WorldStore):
    store.apply_effects({"noise": 30, "awareness": 40})
    store.set_flags({"has_note": True})
    store.enter_scene("inspector_01")
    store.bump_scene_count()
    store.begin_turn()
    store.add_history("user", "hello")

    state = store.advance_loop(random.Random(1))
    assert state.loop == 2
    assert 75 <= state.stability <= 85
    assert state.noise == 35
    assert 20 <= state.trust <= 40
    assert state.awareness == 30
    assert state.visited == []
    assert state.current_scene_id == "start"
    assert state.scene_count == 0 and state.turn_count == 0
    assert state.flags == {"has_note": True}
    assert len(state.history) == 1


def test_advance_loop_clamps_noise(store: WorldStore):
    store.apply_effects({"noise": 100})
    assert store.advance_loop().noise == 100


def test_reset_and_clear_save(storage: Storage):
    store = WorldStore(storage)
    store.apply_effects({"trust": 20})
    store.clear_save()
    assert store.state.trust == 30
    assert WorldStore(storage).state.trust == 30
