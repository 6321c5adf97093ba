"""World state store — the single owner of the mutable WorldState.

Callers read through `store.state` and mutate only through the methods
below; each mutation is persisted before it returns so a crash never loses
committed progress. Numeric effects and flags delegate to night_train.effects.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

from .effects import EffectResult, apply_effects, clamp, set_flags
from .models import DialogEntry, FlagValue, HistoryRole, WorldState
from .storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
START_SCENE_ID = "start"


class WorldStore:
    def __init__(
        self,
        storage: Storage | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        state: WorldState | None = None,
    ) -> None:
        self._storage = storage
        self._history_limit = history_limit
        if state is not None:
            self._state = state
        elif storage is not None:
            self._state = storage.load_world_state()
        else:
            self._state = WorldState()

    @property
    def state(self) -> WorldState:
        return self._state

    def save(self) -> None:
        if self._storage is not None:
            self._storage.save_world_state(self._state)

    # ------------------------------------------------------------------
    # Effects and flags
    # ------------------------------------------------------------------

    def apply_effects(self, deltas: dict) -> EffectResult:
        result = apply_effects(self._state, deltas)
        self.save()
        return result

    def set_flags(self, assignments: dict[str, FlagValue]) -> None:
        set_flags(self._state, assignments)
        self.save()

    # ------------------------------------------------------------------
    # Scenes and counters
    # ------------------------------------------------------------------

    def enter_scene(self, scene_id: str) -> None:
        """Make `scene_id` current and record it as visited this loop."""
        self._state.current_scene_id = scene_id
        if scene_id not in self._state.visited:
            self._state.visited.append(scene_id)
        self.save()

    def enter_location(self, location_id: str) -> None:
        """Move to a location without marking any scene visited."""
        self._state.current_scene_id = location_id
        self.save()

    def bump_scene_count(self) -> int:
        self._state.scene_count += 1
        self.save()
        return self._state.scene_count

    def begin_turn(self) -> int:
        """Spend one dialogue turn. Persisted immediately."""
        self._state.turn_count += 1
        self.save()
        return self._state.turn_count

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_history(
        self,
        role: HistoryRole,
        text: str,
        scene_title: str | None = None,
        npc_name: str | None = None,
    ) -> DialogEntry | None:
        """Append a history entry, evicting the oldest past the limit."""
        if not text:
            return None
        entry = DialogEntry(
            role=role,
            text=text,
            scene_title=scene_title or "Unknown scene",
            npc_name=npc_name or "",
            ts=datetime.now(timezone.utc).isoformat(),
        )
        history = self._state.history
        history.append(entry)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]
        self.save()
        return entry

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def advance_loop(self, rng: random.Random | None = None) -> WorldState:
        """Start the next loop. Flags and history carry over."""
        rng = rng or random.Random()
        s = self._state
        s.loop += 1
        s.stability = rng.randint(75, 85)
        s.noise = clamp(s.noise + 5)
        s.trust = rng.randint(20, 40)
        s.awareness = clamp(s.awareness // 2 + 10)
        s.visited = []
        s.current_scene_id = START_SCENE_ID
        s.scene_count = 0
        s.turn_count = 0
        self.save()
        logger.info("Advanced to loop %d", s.loop)
        return s

    def reset(self) -> WorldState:
        """Discard everything and start over from defaults."""
        self._state = WorldState()
        self.save()
        return self._state

    def clear_save(self) -> WorldState:
        if self._storage is not None:
            self._storage.clear_world_state()
        return self.reset()
