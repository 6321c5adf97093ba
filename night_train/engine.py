"""Game engine — turns player input into world state changes.

Input flow:
  choose(index)      → choice kind decides: narrate through the dialogue
                       session, or apply effects and move to another scene.
  navigate(dir)      → cycle fixed locations; occasionally a random event.
  submit_chat(text)  → one dialogue turn:
      1. Admission (cooldown, one stream at a time) — silent no-op if refused.
      2. Record the user line, spend a turn (persisted), check the turn budget.
      3. Stream narrator output; visible narrative is emitted as it changes.
      4. Settle: append the narrative to history, then apply the directive
         (effects → ending → delayed scene change) exactly once.
  next_loop / new_game / clear_save → lifecycle.

All presentation goes out as EngineEvents to registered listeners; the
engine itself never renders anything. Once an ending fires, gameplay input
is ignored until next_loop() or new_game().
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from .config import default_config
from .endings import NORMAL_ARRIVAL, TURN_LIMIT, ending_summary, evaluate_endings, get_ending
from .knowledge import npc_label
from .models import Choice, ChoiceKind, EngineEvent, Location, Scene
from .prompts import build_chat_payload
from .scenes import (
    CONTINUE_CHOICE,
    SceneGraph,
    SceneResolver,
    TransitionInProgress,
    classify_choice,
    render_scene_text,
)
from .session import DialogueSession, DialogueSessionManager, StreamEnd, StreamOutcome
from .store import WorldStore
from .thoughts import current_thoughts

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "[Connection timed out. Press send to try again.]"
CONNECTION_LOST_MESSAGE = "The connection of minds breaks off... (try again shortly)"

Listener = Callable[[EngineEvent], None]


class GameEngine:
    def __init__(
        self,
        store: WorldStore,
        graph: SceneGraph,
        sessions: DialogueSessionManager,
        config: dict[str, Any] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.config = config or default_config()
        self.rng = rng or random.Random()
        self.resolver = SceneResolver(graph, store, self.rng)
        self.ending: dict[str, Any] | None = None
        self._listeners: list[Listener] = []
        self._location_index = 0
        self._seen_locations: set[str] = set()

    @property
    def graph(self) -> SceneGraph:
        return self.resolver.graph

    @property
    def input_enabled(self) -> bool:
        return self.ending is None and not self.sessions.streaming and not self.resolver.busy

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @contextmanager
    def capture(self) -> Iterator[list[EngineEvent]]:
        """Collect every event emitted inside the block."""
        events: list[EngineEvent] = []
        self.add_listener(events.append)
        try:
            yield events
        finally:
            self.remove_listener(events.append)

    def _emit(self, type: str, **data: Any) -> None:
        event = EngineEvent(type=type, data=data)
        for listener in list(self._listeners):
            listener(event)

    def _emit_state(self) -> None:
        state = self.store.state
        self._emit(
            "state",
            loop=state.loop,
            stability=state.stability,
            noise=state.noise,
            trust=state.trust,
            awareness=state.awareness,
            scene_count=state.scene_count,
            turns_remaining=self.turns_remaining(),
            thoughts=current_thoughts(state),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_scene(self) -> Scene | None:
        return self.graph.scene_for(self.store.state.current_scene_id)

    def current_choices(self) -> list[Choice]:
        scene = self.current_scene()
        if scene is None or not scene.choices:
            return [CONTINUE_CHOICE]
        return list(scene.choices)

    def turns_remaining(self) -> int:
        return max(0, self.config["max_turns"] - self.store.state.turn_count)

    def snapshot(self) -> dict[str, Any]:
        """Everything a client needs to draw the current screen."""
        state = self.store.state
        scene = self.current_scene()
        return {
            "state": state.model_dump(exclude={"history"}),
            "scene": self._scene_view(scene) if scene else None,
            "location": self._location_view(self.graph.get_location(state.current_scene_id)),
            "choices": self._choice_views(self.current_choices()),
            "ending": self.ending,
            "thoughts": current_thoughts(state),
            "turns_remaining": self.turns_remaining(),
            "input_enabled": self.input_enabled,
        }

    def _scene_view(self, scene: Scene) -> dict[str, Any]:
        return {
            "id": scene.id,
            "title": scene.title or "Unknown scene",
            "npc": scene.npc,
            "npc_label": npc_label(scene.npc),
            "npc_sprite": scene.npc_sprite,
            "background": scene.background,
            "text": render_scene_text(scene.text, self.store.state),
        }

    def _location_view(self, loc: Location | None) -> dict[str, Any] | None:
        if loc is None:
            return None
        return {
            "id": loc.id,
            "name": loc.name,
            "background": loc.background,
            "npc_sprite": loc.npc_sprite,
            "npc_label": npc_label(loc.npc_type),
        }

    @staticmethod
    def _choice_views(choices: list[Choice]) -> list[dict[str, Any]]:
        return [
            {"index": i, "label": c.label, "kind": classify_choice(c).value}
            for i, c in enumerate(choices)
        ]

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Present whatever scene the loaded save points at."""
        self._emit_state()
        await self.show_scene(self.store.state.current_scene_id)

    async def show_scene(self, scene_id: str | None) -> Scene | None:
        """Transition to a scene; falls back to a random one, then to the default ending."""
        try:
            async with self.resolver.transition(scene_id, explicit=True) as scene:
                if scene is None:
                    self.trigger_ending(NORMAL_ARRIVAL)
                    return None
                await asyncio.sleep(self.config["transition_delay"])
                self._present_scene(scene)
                return scene
        except TransitionInProgress:
            logger.debug("Ignoring transition to %r: one is in progress", scene_id)
            return None

    def _present_scene(self, scene: Scene) -> None:
        view = self._scene_view(scene)
        self.store.add_history("desc", view["text"], scene.title)
        index = self.graph.location_index_for(scene.id)
        if index is not None:
            self._location_index = index
        self._emit("scene", **view, choices=self._choice_views(self.current_choices()))
        self._emit_state()

    async def advance(self, next_id: str | None, explicit: bool = False) -> Scene | None:
        """Move on from the current scene.

        A narrator directive (explicit=False) naming no scene, or the current
        one, keeps the player where they are. A predefined choice always moves,
        to a random eligible scene when it names none.
        """
        current = self.store.state.current_scene_id
        if not explicit and (not next_id or next_id == current):
            logger.debug("Staying in current scene %s", current)
            self._emit("choices", choices=self._choice_views(self.current_choices()))
            return None
        return await self.show_scene(next_id)

    # ------------------------------------------------------------------
    # Choices
    # ------------------------------------------------------------------

    async def choose(self, index: int) -> bool:
        """Act on the choice at `index` of the current scene.

        Raises IndexError for an index the scene does not offer. Returns False
        when input is currently suspended.
        """
        choices = self.current_choices()
        if index < 0 or index >= len(choices):
            raise IndexError(f"Choice index {index} out of range")
        if not self.input_enabled:
            return False
        await self.handle_choice(choices[index])
        return True

    async def handle_choice(self, choice: Choice) -> None:
        kind = classify_choice(choice)

        # Spoken lines and events go to the narrator; the scene stays.
        if kind in (ChoiceKind.DIALOGUE, ChoiceKind.EVENT):
            self._apply_choice_outcome(choice)
            text = f"*You {choice.label}*" if kind == ChoiceKind.EVENT else choice.label
            await self.submit_chat(text)
            return

        if kind in (ChoiceKind.NAVIGATE, ChoiceKind.ACTION):
            self._apply_choice_outcome(choice)
            self.store.bump_scene_count()
            self._emit_state()
            if choice.ending and self.trigger_ending(choice.ending):
                return
            await self.advance(choice.next, explicit=True)
            return

        # Implicit: effects first, then an ending, a fixed target, or narration.
        self._apply_choice_outcome(choice)
        if choice.ending and self.trigger_ending(choice.ending):
            return
        if self._check_endings():
            return
        if choice.next:
            self.store.bump_scene_count()
            self._emit_state()
            await self.advance(choice.next, explicit=True)
            return
        await self.submit_chat(f"*You {choice.label}*")

    def _apply_choice_outcome(self, choice: Choice) -> None:
        if choice.effects:
            self._apply_effects(choice.effects)
        if choice.set_flags:
            self.store.set_flags(choice.set_flags)
        self._emit_state()

    def _apply_effects(self, deltas: dict[str, Any]) -> None:
        result = self.store.apply_effects(deltas)
        if result.shock:
            self._emit("shock", changes=result.changes)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate(self, direction: str) -> bool:
        """Step to the previous or next fixed location."""
        if direction not in ("prev", "next"):
            raise ValueError(f"Unknown direction {direction!r}")
        locations = self.graph.locations
        if not locations or not self.input_enabled:
            return False

        current = self.store.state.current_scene_id
        in_event = current.startswith("event_")
        if not in_event:
            index = self.graph.location_index_for(current)
            if index is not None:
                self._location_index = index

        if (
            self.graph.random_events
            and not in_event
            and self.rng.random() < self.config["random_event_chance"]
        ):
            event_id = self.rng.choice(self.graph.random_events)
            logger.info("Random event %s", event_id)
            self.store.bump_scene_count()
            await self.advance(event_id, explicit=True)
            return True

        step = -1 if direction == "prev" else 1
        self._location_index = (self._location_index + step) % len(locations)
        loc = locations[self._location_index]

        try:
            async with self.resolver.guard():
                await asyncio.sleep(self.config["transition_delay"])
                self.store.enter_location(loc.id)
                revisit = loc.id in self._seen_locations
                self._seen_locations.add(loc.id)
                default_scene = self.graph.get(loc.default_scene_id)
                text = None
                if not revisit:
                    text = render_scene_text(default_scene.text, self.store.state) if default_scene else "..."
                self._emit(
                    "location",
                    **self._location_view(loc),
                    revisit=revisit,
                    text=text,
                    choices=self._choice_views(self.current_choices()),
                )
        except TransitionInProgress:
            return False
        return True

    # ------------------------------------------------------------------
    # Endings
    # ------------------------------------------------------------------

    def _check_endings(self) -> bool:
        ending_id = evaluate_endings(
            self.store.state, self.config["normal_arrival_min_scenes"]
        )
        return ending_id is not None and self.trigger_ending(ending_id)

    def trigger_ending(self, ending_id: str) -> bool:
        """Show an ending and suspend input. False if the id is unknown."""
        ending = get_ending(ending_id)
        if ending is None:
            return False
        self.ending = ending_summary(ending, self.store.state)
        self.store.save()
        logger.info("Ending %s (loop %d)", ending.id, self.store.state.loop)
        self._emit("ending", **self.ending)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reset_session(self) -> None:
        self.sessions.cancel_all()
        self.ending = None
        self._location_index = 0
        self._seen_locations.clear()

    async def next_loop(self) -> None:
        self._reset_session()
        self.store.advance_loop(self.rng)
        self._emit_state()
        await self.show_scene("start")

    async def new_game(self) -> None:
        self._reset_session()
        self.store.reset()
        self._emit_state()
        await self.show_scene("start")

    async def clear_save(self) -> None:
        self._reset_session()
        self.store.clear_save()
        self._emit_state()
        await self.show_scene("start")

    def shutdown(self) -> None:
        """Cancel any in-flight dialogue (component teardown)."""
        self.sessions.cancel_all()

    # ------------------------------------------------------------------
    # Dialogue
    # ------------------------------------------------------------------

    async def submit_chat(self, text: str) -> StreamOutcome | None:
        """Run one dialogue turn. Returns None when the turn was not streamed."""
        text = text.strip()
        if not text or self.ending is not None:
            return None
        session = self.sessions.admit()
        if session is None:
            return None

        try:
            state = self.store.state
            scene = self.current_scene()
            payload = build_chat_payload(state, scene, text, self.config)

            self.store.add_history("user", text, scene.title if scene else None)
            self._emit("message", role="user", text=text)
            turn = self.store.begin_turn()
            self._emit_state()
            if turn >= self.config["max_turns"]:
                self.trigger_ending(TURN_LIMIT)
                return None

            self._emit("input", enabled=False)
            outcome = await self.sessions.stream(
                session, payload,
                on_display=lambda display: self._emit(
                    "narrative", session=session.id, text=display
                ),
            )
            await self._settle(session, outcome, scene)
            return outcome
        finally:
            self.sessions.finish(session)
            self._emit("input", enabled=self.input_enabled)

    async def _settle(
        self, session: DialogueSession, outcome: StreamOutcome, scene: Scene | None
    ) -> None:
        if outcome.end == StreamEnd.CANCELLED:
            return
        if outcome.end == StreamEnd.FAILED:
            self._emit("message", role="system", text=CONNECTION_LOST_MESSAGE)
            return
        if outcome.end in (StreamEnd.STALLED, StreamEnd.TIMED_OUT):
            self._emit("message", role="system", text=TIMEOUT_MESSAGE)

        if outcome.narrative:
            self.store.add_history(
                "npc", outcome.narrative,
                scene.title if scene else None,
                npc_label(scene.npc) if scene else None,
            )
            self._emit("message", role="npc", text=outcome.narrative)

        directive = outcome.directive
        if directive is None or session.token.cancelled:
            self._emit("choices", choices=self._choice_views(self.current_choices()))
            return

        if directive.effects:
            self._apply_effects(directive.effects)
            self._emit_state()
        if directive.ending and self.trigger_ending(directive.ending):
            return
        if self._check_endings():
            return

        next_id = directive.next or None
        if next_id and next_id != self.store.state.current_scene_id:
            # Let the player finish reading before the view changes.
            if await session.token.wait(self.config["transition_grace"]):
                logger.debug("Scene change to %s dropped: turn superseded", next_id)
                return
        await self.advance(next_id)
