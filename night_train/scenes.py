"""Scene graph — loading, choice classification, text and scene selection.

Scene document (JSON), either a bare list of scenes or an object:

    {
      "scenes": [{"id", "title", "text", "npc", "background", "npcSprite",
                  "choices": [{"label", "type"?, "effects"?, "setFlags"?,
                               "ending"?, "next"?}],
                  "conditions"?, "random"?}, ...],
      "locations": [{"id", "name", "bg", "npc", "npcType", "defaultSceneId"}],
      "random_events": ["event_glitch", ...]
    }

The document is read once at startup. If it cannot be fetched or parsed, a
single fallback scene is substituted so the engine never starts empty.

Selection rules (SceneGraph.resolve):
  - a known scene id is selected directly;
  - a location id resolves to that location's default scene;
  - anything else (no target, or an unknown id) on an explicit request falls
    back to a uniform random pick among scenes that are marked random, not
    yet visited this loop, and whose conditions hold;
  - None means nothing is eligible and the caller must end the loop.

SceneResolver serialises transitions: while one is in progress every other
request raises TransitionInProgress.
"""

from __future__ import annotations

import json
import logging
import random
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from pydantic import ValidationError

from .conditions import check_conditions
from .models import Choice, ChoiceKind, Location, Scene, WorldState
from .store import WorldStore

logger = logging.getLogger(__name__)

FALLBACK_SCENE = Scene(
    id="start",
    title="Fallback",
    npc="none",
    text="Error loading scenes",
    choices=[],
)

CONTINUE_CHOICE = Choice(label="Continue...", type=ChoiceKind.ACTION.value)

# Straight and curly double quotes mark spoken lines.
_QUOTE_RE = re.compile(r'["“”]')
_LOOP_RE = re.compile(r"\{loop\}")
_LOOP_GATE_RE = re.compile(r"\{loop>=(\d+):([^}]+)\}")


class SceneLoadError(RuntimeError):
    """Raised when the scene document cannot be read or validated."""


class TransitionInProgress(RuntimeError):
    """Raised when a scene transition is requested while another is running."""


# ---------------------------------------------------------------------------
# Classification and text
# ---------------------------------------------------------------------------

def classify_choice(choice: Choice) -> ChoiceKind:
    """Resolve a choice's kind.

    An explicit tag always wins. Without one, a label containing double
    quotes is taken to be a spoken line (dialogue); anything else is an
    implicit action. The quote heuristic is an authoring shortcut only.
    Unknown tags are treated as implicit.
    """
    if choice.type:
        try:
            return ChoiceKind(choice.type)
        except ValueError:
            return ChoiceKind.IMPLICIT
    if _QUOTE_RE.search(choice.label):
        return ChoiceKind.DIALOGUE
    return ChoiceKind.IMPLICIT


def render_scene_text(text: str | None, state: WorldState) -> str:
    """Expand {loop} and {loop>=N:text} directives."""
    if not text:
        return "..."
    text = _LOOP_RE.sub(str(state.loop), text)
    return _LOOP_GATE_RE.sub(
        lambda m: m.group(2) if state.loop >= int(m.group(1)) else "",
        text,
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class SceneGraph:
    """Read-only collection of authored scenes and locations."""

    def __init__(
        self,
        scenes: list[Scene],
        locations: list[Location] | None = None,
        random_events: list[str] | None = None,
    ) -> None:
        if not scenes:
            scenes = [FALLBACK_SCENE]
        self._scenes: dict[str, Scene] = {}
        for scene in scenes:
            if scene.id in self._scenes:
                logger.warning("Duplicate scene id %r, keeping the first", scene.id)
                continue
            self._scenes[scene.id] = scene
        self.locations: list[Location] = list(locations or [])
        self.random_events: list[str] = [
            e for e in (random_events or []) if e in self._scenes
        ]

    @property
    def scenes(self) -> list[Scene]:
        return list(self._scenes.values())

    def get(self, scene_id: str | None) -> Scene | None:
        if not scene_id:
            return None
        return self._scenes.get(scene_id)

    def get_location(self, location_id: str | None) -> Location | None:
        for loc in self.locations:
            if loc.id == location_id:
                return loc
        return None

    def is_known_id(self, scene_id: str) -> bool:
        return scene_id in self._scenes or self.get_location(scene_id) is not None

    def scene_for(self, scene_id: str | None) -> Scene | None:
        """The scene backing an id, following a location to its default scene."""
        scene = self.get(scene_id)
        if scene is not None:
            return scene
        loc = self.get_location(scene_id)
        if loc is not None:
            return self.get(loc.default_scene_id)
        return None

    def location_index_for(self, scene_id: str) -> int | None:
        """Index of the location a scene id belongs to, if any."""
        for i, loc in enumerate(self.locations):
            if (
                scene_id == loc.id
                or scene_id.startswith(loc.id + "_")
                or (loc.default_scene_id and scene_id == loc.default_scene_id)
            ):
                return i
        return None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def eligible_random(self, state: WorldState) -> list[Scene]:
        return [
            scene for scene in self._scenes.values()
            if scene.random
            and scene.id not in state.visited
            and check_conditions(scene.conditions, state)
        ]

    def select_random(self, state: WorldState, rng: random.Random) -> Scene | None:
        available = self.eligible_random(state)
        if not available:
            return None
        return rng.choice(available)

    def resolve(
        self,
        target_id: str | None,
        state: WorldState,
        explicit: bool,
        rng: random.Random,
    ) -> Scene | None:
        scene = self.scene_for(target_id)
        if scene is not None:
            return scene
        if target_id:
            logger.warning("Unknown scene id %r", target_id)
        if not explicit:
            return None
        return self.select_random(state, rng)


def parse_scene_document(data: object) -> SceneGraph:
    """Build a SceneGraph from a decoded scene document."""
    if isinstance(data, list):
        data = {"scenes": data}
    if not isinstance(data, dict) or not isinstance(data.get("scenes"), list):
        raise SceneLoadError("Scene document must be a list or an object with 'scenes'")
    try:
        scenes = [Scene.model_validate(s) for s in data["scenes"]]
        locations = [Location.model_validate(loc) for loc in data.get("locations", [])]
    except ValidationError as e:
        raise SceneLoadError(f"Invalid scene document: {e}") from e
    return SceneGraph(scenes, locations, data.get("random_events", []))


def load_scenes(source: str | Path, timeout: float = 10.0) -> SceneGraph:
    """Load the scene document from a file path or an http(s) URL.

    Never raises: any failure yields a graph holding only the fallback scene.
    """
    try:
        text = _fetch(source, timeout)
        graph = parse_scene_document(json.loads(text))
    except (SceneLoadError, OSError, httpx.HTTPError, json.JSONDecodeError) as e:
        logger.warning("Error loading scenes from %s: %s", source, e)
        return SceneGraph([FALLBACK_SCENE])
    logger.info("Loaded %d scenes", len(graph.scenes))
    return graph


def _fetch(source: str | Path, timeout: float) -> str:
    src = str(source)
    if src.startswith(("http://", "https://")):
        resp = httpx.get(src, timeout=timeout)
        resp.raise_for_status()
        return resp.text
    return Path(src).read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class SceneResolver:
    """Serialises scene transitions and commits the chosen scene to the store."""

    def __init__(
        self,
        graph: SceneGraph,
        store: WorldStore,
        rng: random.Random | None = None,
    ) -> None:
        self.graph = graph
        self._store = store
        self._rng = rng or random.Random()
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def rng(self) -> random.Random:
        return self._rng

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[None]:
        """Hold the transition flag for the duration of the block."""
        if self._busy:
            raise TransitionInProgress("A scene transition is already in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    @asynccontextmanager
    async def transition(
        self, target_id: str | None, explicit: bool = True
    ) -> AsyncIterator[Scene | None]:
        """Resolve a scene and hold the transition flag while the caller presents it.

        The chosen scene is recorded as current and visited before the
        caller's block runs. Yields None when nothing is eligible.
        """
        async with self.guard():
            scene = self.graph.resolve(target_id, self._store.state, explicit, self._rng)
            if scene is not None:
                self._store.enter_scene(scene.id)
            yield scene
