"""Health check and settings endpoints."""

from fastapi import APIRouter, Request

from night_train.config import get_config, update_config
from night_train.llm import HttpStreamingLLM

from .models import SettingsBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get engine settings (narrator connection, timings, budgets)."""
    return get_config(request.app.state.data_dir)


@router.patch("/settings")
async def update_settings(request: Request, body: SettingsBody):
    """Update engine settings (partial merge). Applies from the next turn."""
    fields = body.model_dump(exclude_none=True)
    config = update_config(request.app.state.data_dir, fields)
    engine = request.app.state.engine
    engine.config.update(config)
    sessions = engine.sessions
    sessions.cooldown = config["request_cooldown"]
    sessions.stall_timeout = config["stall_timeout"]
    sessions.hard_timeout = config["hard_timeout"]
    if "api_url" in fields and isinstance(sessions.llm, HttpStreamingLLM):
        sessions.llm = HttpStreamingLLM(config["api_url"])
    return config
