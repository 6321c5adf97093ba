"""FastMCP server exposing narrator knowledge as MCP tools.

Tools:
  - lookup_flag_facts(flags)   — facts the narrator may use for the given flags
  - describe_world()           — loop, stats, current scene and known facts

The world store is set via set_store() by the app at startup or by tests,
or loaded from data/ when run as __main__.

Usage:
    uv run python -m backend.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from night_train.knowledge import FLAG_FACTS, known_facts
from night_train.store import WorldStore

mcp = FastMCP("night-train-narrator")

_store: WorldStore = WorldStore()


def set_store(store: WorldStore) -> None:
    """Replace the active world store (used by the app and in tests)."""
    global _store
    _store = store


def get_store() -> WorldStore:
    return _store


@mcp.tool()
def lookup_flag_facts(flags: list[str]) -> list[dict]:
    """Look up the narrator facts for the given flag keys. Unknown keys are skipped."""
    return [{"flag": f, "fact": FLAG_FACTS[f]} for f in flags if f in FLAG_FACTS]


@mcp.tool()
def describe_world() -> dict:
    """Summarise the current world state for the narrator."""
    state = _store.state
    return {
        "loop": state.loop,
        "stability": state.stability,
        "noise": state.noise,
        "trust": state.trust,
        "awareness": state.awareness,
        "current_scene_id": state.current_scene_id,
        "scene_count": state.scene_count,
        "turn_count": state.turn_count,
        "facts": known_facts(state),
    }


if __name__ == "__main__":
    from pathlib import Path

    from night_train.storage import Storage

    data_dir = Path(__file__).parent.parent / "data"
    set_store(WorldStore(Storage(data_dir)))
    mcp.run()
