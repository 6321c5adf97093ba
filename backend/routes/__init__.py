"""FastAPI API endpoints under /api.

Endpoint groups: game (state, choices, navigation, lifecycle), chat (streamed
narrator turn as server-sent events), settings.
"""

from fastapi import APIRouter

from .chat import router as chat_router
from .game import router as game_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(game_router)
router.include_router(chat_router)
