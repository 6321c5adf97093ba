"""Tests for night_train.scenes — loading, classification, selection, transitions."""

import json
import random
from unittest.mock import MagicMock, patch

import httpx
import pytest

from night_train.models import Choice, ChoiceKind, Location, Scene, WorldState
from night_train.scenes import (
    FALLBACK_SCENE,
    SceneGraph,
    SceneLoadError,
    SceneResolver,
    TransitionInProgress,
    classify_choice,
    load_scenes,
    parse_scene_document,
    render_scene_text,
)
from night_train.store import WorldStore


def _graph() -> SceneGraph:
    return SceneGraph(
        [
            Scene(id="start", title="Start"),
            Scene(id="inspector_01", title="Inspector"),
            Scene(id="r1", random=True),
            Scene(id="r2", random=True, conditions={"awareness": {"min": 20}}),
        ],
        [Location(id="inspector", name="Inspector", default_scene_id="inspector_01")],
    )


# ---------------------------------------------------------------------------
# Classification and text
# ---------------------------------------------------------------------------

class TestClassifyChoice:
    def test_explicit_tag_wins(self) -> None:
        assert classify_choice(Choice(label='"Hello"', type="action")) == ChoiceKind.ACTION
        assert classify_choice(Choice(label="Run", type="navigate")) == ChoiceKind.NAVIGATE

    def test_quoted_label_is_dialogue(self) -> None:
        assert classify_choice(Choice(label='"Who are you?"')) == ChoiceKind.DIALOGUE
        assert classify_choice(Choice(label="“Who are you?”")) == ChoiceKind.DIALOGUE

    def test_plain_label_is_implicit(self) -> None:
        assert classify_choice(Choice(label="Sit down")) == ChoiceKind.IMPLICIT

    def test_unknown_tag_is_implicit(self) -> None:
        assert classify_choice(Choice(label="x", type="teleport")) == ChoiceKind.IMPLICIT


class TestRenderSceneText:
    def test_empty_text_placeholder(self) -> None:
        assert render_scene_text("", WorldState()) == "..."
        assert render_scene_text(None, WorldState()) == "..."

    def test_loop_number(self) -> None:
        assert render_scene_text("Loop {loop}.", WorldState(loop=3)) == "Loop 3."

    def test_loop_gate(self) -> None:
        text = "A.{loop>=2: B.}"
        assert render_scene_text(text, WorldState(loop=1)) == "A."
        assert render_scene_text(text, WorldState(loop=2)) == "A. B."


# ---------------------------------------------------------------------------
# Graph selection
# ---------------------------------------------------------------------------

class TestSceneGraph:
    def test_empty_graph_gets_fallback(self) -> None:
        graph = SceneGraph([])
        assert graph.get("start") is FALLBACK_SCENE

    def test_duplicate_ids_keep_first(self) -> None:
        graph = SceneGraph([Scene(id="a", title="one"), Scene(id="a", title="two")])
        assert graph.get("a").title == "one"

    def test_random_events_must_exist(self) -> None:
        graph = SceneGraph([Scene(id="start"), Scene(id="event_x")], [], ["event_x", "event_y"])
        assert graph.random_events == ["event_x"]

    def test_location_resolves_to_default_scene(self) -> None:
        graph = _graph()
        assert graph.scene_for("inspector").id == "inspector_01"
        assert graph.location_index_for("inspector_01") == 0
        assert graph.location_index_for("inspector_02") == 0
        assert graph.location_index_for("start") is None

    def test_eligible_excludes_visited_and_conditions(self) -> None:
        graph = _graph()
        state = WorldState(visited=["r1"])
        assert graph.eligible_random(state) == []
        state.awareness = 20
        assert [s.id for s in graph.eligible_random(state)] == ["r2"]

    def test_resolve_known_id(self) -> None:
        graph = _graph()
        scene = graph.resolve("inspector_01", WorldState(), True, random.Random(0))
        assert scene.id == "inspector_01"

    def test_resolve_unknown_explicit_falls_back_to_random(self) -> None:
        graph = _graph()
        scene = graph.resolve("nowhere", WorldState(), True, random.Random(0))
        assert scene.id == "r1"

    def test_resolve_unknown_implicit_is_none(self) -> None:
        graph = _graph()
        assert graph.resolve("nowhere", WorldState(), False, random.Random(0)) is None

    def test_resolve_nothing_eligible(self) -> None:
        graph = _graph()
        assert graph.resolve(None, WorldState(visited=["r1", "r2"], awareness=50), True,
                             random.Random(0)) is None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoading:
    def test_bare_list_document(self) -> None:
        graph = parse_scene_document([{"id": "start", "text": "hi"}])
        assert graph.get("start").text == "hi"
        assert graph.locations == []

    def test_object_document(self) -> None:
        graph = parse_scene_document({
            "scenes": [{"id": "start"}, {"id": "event_glitch"}],
            "locations": [{"id": "start", "name": "Carriage", "defaultSceneId": "start"}],
            "random_events": ["event_glitch"],
        })
        assert graph.locations[0].name == "Carriage"
        assert graph.random_events == ["event_glitch"]

    def test_invalid_document_raises(self) -> None:
        with pytest.raises(SceneLoadError):
            parse_scene_document({"nope": []})
        with pytest.raises(SceneLoadError):
            parse_scene_document([{"title": "missing id"}])

    def test_load_from_file(self, tmp_path) -> None:
        path = tmp_path / "scenes.json"
        path.write_text(json.dumps([{"id": "start", "title": "Hello"}]))
        assert load_scenes(path).get("start").title == "Hello"

    def test_missing_file_falls_back(self, tmp_path) -> None:
        graph = load_scenes(tmp_path / "missing.json")
        assert graph.scenes == [FALLBACK_SCENE]

    def test_malformed_json_falls_back(self, tmp_path) -> None:
        path = tmp_path / "scenes.json"
        path.write_text("{not json")
        assert load_scenes(path).scenes == [FALLBACK_SCENE]

    def test_load_from_url(self) -> None:
        resp = MagicMock()
        resp.text = json.dumps([{"id": "start", "title": "Remote"}])
        resp.raise_for_status = MagicMock()
        with patch("httpx.get", return_value=resp) as mock_get:
            graph = load_scenes("http://example.test/scenes.json")
        assert graph.get("start").title == "Remote"
        assert mock_get.call_args[0][0] == "http://example.test/scenes.json"

    def test_url_error_falls_back(self) -> None:
        with patch("httpx.get", side_effect=httpx.ConnectError("down")):
            graph = load_scenes("http://example.test/scenes.json")
        assert graph.scenes == [FALLBACK_SCENE]

    def test_preset_document_loads(self, graph: SceneGraph) -> None:
        assert graph.get("start") is not None
        assert len(graph.locations) == 5
        assert graph.random_events == ["event_glitch", "event_whisper"]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TestSceneResolver:
    async def test_transition_records_visit(self) -> None:
        store = WorldStore()
        resolver = SceneResolver(_graph(), store, random.Random(0))
        async with resolver.transition("inspector_01") as scene:
            assert resolver.busy
            assert scene.id == "inspector_01"
        assert not resolver.busy
        assert store.state.current_scene_id == "inspector_01"
        assert store.state.visited == ["inspector_01"]

    async def test_random_scene_never_revisited_within_loop(self) -> None:
        store = WorldStore()
        resolver = SceneResolver(_graph(), store, random.Random(0))
        async with resolver.transition(None) as first:
            assert first.id == "r1"
        async with resolver.transition(None) as second:
            assert second is None

    async def test_concurrent_transition_rejected(self) -> None:
        resolver = SceneResolver(_graph(), WorldStore(), random.Random(0))
        async with resolver.transition("start"):
            with pytest.raises(TransitionInProgress):
                async with resolver.transition("inspector_01"):
                    pass
        assert not resolver.busy
