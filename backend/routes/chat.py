"""Streamed narrator turn as server-sent events.

Each engine event of the turn is sent as one `data:` line holding the event's
JSON; the stream ends with `data: [DONE]`. A turn that is not admitted
(cooldown, another stream running, empty text, an ending on screen) still
answers with the final input/state events, so the client can tell nothing
was sent.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .models import ChatBody

logger = logging.getLogger(__name__)

router = APIRouter()


def _log_turn_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Dialogue turn failed", exc_info=error)


def start_turn(engine, message: str) -> asyncio.Task:
    """Run a dialogue turn in the background, logging it if it fails."""
    task = asyncio.create_task(engine.submit_chat(message))
    task.add_done_callback(_log_turn_failure)
    return task


def abandon_turn(engine, task: asyncio.Task) -> None:
    """Stop a turn whose client went away; the engine still settles it."""
    if not task.done():
        logger.info("Chat client disconnected, cancelling turn")
        engine.shutdown()


@router.post("/game/chat")
async def chat(request: Request, body: ChatBody):
    """Send a line of dialogue and stream the narrator's reply."""
    engine = request.app.state.engine
    queue: asyncio.Queue = asyncio.Queue()

    async def event_stream():
        engine.add_listener(queue.put_nowait)
        task = start_turn(engine, body.message)
        try:
            while not (task.done() and queue.empty()):
                try:
                    event = await asyncio.wait_for(queue.get(), 0.1)
                except asyncio.TimeoutError:
                    continue
                yield f"data: {event.model_dump_json()}\n\n"
            outcome = task.result()
            summary = {
                "type": "done",
                "data": {
                    "admitted": outcome is not None,
                    "end": outcome.end.value if outcome else None,
                },
            }
            yield f"data: {json.dumps(summary)}\n\n"
            yield "data: [DONE]\n\n"
        finally:
            engine.remove_listener(queue.put_nowait)
            abandon_turn(engine, task)

    return StreamingResponse(event_stream(), media_type="text/event-stream")
