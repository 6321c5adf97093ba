import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend import mcp_server
from backend.routes import router
from night_train.config import get_config
from night_train.engine import GameEngine
from night_train.llm import HttpStreamingLLM
from night_train.scenes import load_scenes
from night_train.session import DialogueSessionManager
from night_train.storage import Storage
from night_train.store import WorldStore

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_SCENES_PATH = Path(__file__).parent.parent / "presets" / "scenes.json"

logger = logging.getLogger(__name__)


def build_engine(data_dir: Path, scenes_source: str | Path) -> GameEngine:
    """Wire storage, scenes, narrator client and session manager into an engine."""
    config = get_config(data_dir)
    store = WorldStore(Storage(data_dir), history_limit=config["history_limit"])
    graph = load_scenes(scenes_source)
    sessions = DialogueSessionManager(
        HttpStreamingLLM(config["api_url"]),
        cooldown=config["request_cooldown"],
        stall_timeout=config["stall_timeout"],
        hard_timeout=config["hard_timeout"],
    )
    return GameEngine(store, graph, sessions, config)


def create_app(
    data_dir: Path | None = None,
    scenes_path: str | Path | None = None,
    engine: GameEngine | None = None,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    scenes_source = scenes_path or os.getenv("SCENES_PATH", str(DEFAULT_SCENES_PATH))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            app.state.engine = build_engine(resolved, scenes_source)
        mcp_server.set_store(app.state.engine.store)
        await app.state.engine.start()
        logger.info("Night train ready (loop %d)", app.state.engine.store.state.loop)
        yield
        app.state.engine.shutdown()

    app = FastAPI(title="Night Train", lifespan=lifespan)
    app.state.data_dir = resolved
    app.state.engine = engine
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR / SCENES_PATH env vars or defaults)
app = create_app()
