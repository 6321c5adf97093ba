import asyncio
import random
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from night_train.config import default_config
from night_train.engine import GameEngine
from night_train.models import ChatPayload, WorldState
from night_train.scenes import SceneGraph, load_scenes
from night_train.session import DialogueSessionManager
from night_train.storage import Storage
from night_train.store import WorldStore

PRESETS_DIR = Path(__file__).parent / "presets"


class ScriptedLLM:
    """Streams a fixed list of chunks, optionally pausing or hanging."""

    def __init__(
        self,
        chunks: list[str] | None = None,
        delay: float = 0.0,
        hang_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.chunks = chunks or []
        self.delay = delay
        self.hang_after = hang_after
        self.error = error
        self.payloads: list[ChatPayload] = []
        self.closed = False

    async def stream(self, payload: ChatPayload) -> AsyncIterator[str]:
        self.payloads.append(payload)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.hang_after is not None and i >= self.hang_after:
                    await asyncio.Event().wait()
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield chunk
            if self.error is not None:
                raise self.error
            if self.hang_after is not None and self.hang_after >= len(self.chunks):
                await asyncio.Event().wait()
        finally:
            self.closed = True


class ManualClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    return Storage(tmp_path / "data")


@pytest.fixture
def store(storage: Storage) -> WorldStore:
    return WorldStore(storage)


@pytest.fixture
def graph() -> SceneGraph:
    return load_scenes(PRESETS_DIR / "scenes.json")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM(["The inspector nods."])


@pytest.fixture
def sessions(llm: ScriptedLLM, clock: ManualClock) -> DialogueSessionManager:
    return DialogueSessionManager(llm, cooldown=1.5, stall_timeout=15, hard_timeout=45, clock=clock)


@pytest.fixture
def config() -> dict:
    config = default_config()
    config.update(transition_delay=0, transition_grace=0, random_event_chance=0)
    return config


@pytest.fixture
def engine(
    store: WorldStore,
    graph: SceneGraph,
    sessions: DialogueSessionManager,
    config: dict,
) -> GameEngine:
    return GameEngine(store, graph, sessions, config, rng=random.Random(7))


@pytest.fixture
def fresh_state() -> WorldState:
    return WorldState()
