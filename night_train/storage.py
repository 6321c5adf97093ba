"""JSON file storage.

Persisted data lives in a single flat JSON object under a configurable base
directory, addressed by string keys, the way a browser's localStorage would
hold it. There is no database; reads and writes go through plain helpers
that load and dump JSON.

Directory layout:

    {base}/
      storage.json     ← {key: serialised value, ...}
      config.json      ← engine settings (see night_train.config)

The world save is one serialised WorldState blob under SAVE_KEY. Loading
merges the stored fields over defaults, so saves written by older versions
(missing fields, legacy field names) keep working. A payload that cannot be
parsed or validated is discarded and a fresh default state is returned.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .models import LEGACY_STAT_NAMES, WorldState

logger = logging.getLogger(__name__)

SAVE_KEY = "nighttrain_save"

# Field names written by the first release of the save format.
_LEGACY_FIELDS = {
    **LEGACY_STAT_NAMES,
    "playedScenes": "visited",
    "currentSceneId": "current_scene_id",
    "sceneCount": "scene_count",
    "turnCount": "turn_count",
    "dialogHistory": "history",
}

_LEGACY_HISTORY_FIELDS = {"sceneTitle": "scene_title", "npcName": "npc_name"}


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _items_file(self) -> Path:
        return self._base / "storage.json"

    def _read_items(self) -> dict[str, str]:
        path = self._items_file()
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            logger.warning("Storage file %s is corrupt, starting empty: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_items(self, items: dict[str, str]) -> None:
        self._items_file().write_text(json.dumps(items, indent=2))

    # ------------------------------------------------------------------
    # Key/value access
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> str | None:
        return self._read_items().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_items()
        items[key] = value
        self._write_items(items)

    def remove_item(self, key: str) -> None:
        items = self._read_items()
        if items.pop(key, None) is not None:
            self._write_items(items)

    # ------------------------------------------------------------------
    # World save
    # ------------------------------------------------------------------

    def load_world_state(self) -> WorldState:
        """Read the save, merged over defaults. Never raises."""
        saved = self.get_item(SAVE_KEY)
        if saved is None:
            return WorldState()
        try:
            data = json.loads(saved)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            state = WorldState.model_validate(_migrate_save(data))
        except (ValueError, ValidationError) as e:
            logger.warning("Failed to parse save, creating new state: %s", e)
            return WorldState()
        logger.info("Loaded saved state, loop %d", state.loop)
        return state

    def save_world_state(self, state: WorldState) -> None:
        self.set_item(SAVE_KEY, state.model_dump_json())

    def clear_world_state(self) -> None:
        self.remove_item(SAVE_KEY)


def _migrate_save(data: dict[str, Any]) -> dict[str, Any]:
    """Rename legacy fields in place; current names win when both exist."""
    for old, new in _LEGACY_FIELDS.items():
        if old in data:
            value = data.pop(old)
            data.setdefault(new, value)
    history = data.get("history")
    if isinstance(history, list):
        for entry in history:
            if not isinstance(entry, dict):
                continue
            for old, new in _LEGACY_HISTORY_FIELDS.items():
                if old in entry:
                    entry.setdefault(new, entry.pop(old))
    return data
