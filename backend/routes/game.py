"""Game state, choices, navigation and loop lifecycle endpoints.

Every mutating endpoint returns the engine events it produced along with a
fresh snapshot, so a client can replay the transition and then redraw.
"""

from fastapi import APIRouter, HTTPException, Request

from .models import NavigateBody

router = APIRouter()


def _result(engine, events) -> dict:
    return {
        "events": [e.model_dump() for e in events],
        "snapshot": engine.snapshot(),
    }


@router.get("/game")
async def get_game(request: Request):
    """Current world state, scene, choices, thoughts and ending."""
    return request.app.state.engine.snapshot()


@router.get("/game/history")
async def get_history(request: Request):
    """Dialogue history of the current save, oldest first."""
    state = request.app.state.engine.store.state
    return [e.model_dump() for e in state.history]


@router.post("/game/choices/{index}")
async def choose(request: Request, index: int):
    """Pick a choice of the current scene by position."""
    engine = request.app.state.engine
    with engine.capture() as events:
        try:
            accepted = await engine.choose(index)
        except IndexError:
            raise HTTPException(404, "Choice not found")
    if not accepted:
        raise HTTPException(409, "Input is currently disabled")
    return _result(engine, events)


@router.post("/game/navigate")
async def navigate(request: Request, body: NavigateBody):
    """Move to the previous or next location of the carriage."""
    engine = request.app.state.engine
    with engine.capture() as events:
        try:
            moved = await engine.navigate(body.direction)
        except ValueError as e:
            raise HTTPException(400, str(e))
    if not moved:
        raise HTTPException(409, "Cannot move right now")
    return _result(engine, events)


@router.post("/game/new")
async def new_game(request: Request):
    """Discard all progress and start from the first loop."""
    engine = request.app.state.engine
    with engine.capture() as events:
        await engine.new_game()
    return _result(engine, events)


@router.post("/game/next-loop")
async def next_loop(request: Request):
    """Board the train again: next loop, flags and history carried over."""
    engine = request.app.state.engine
    with engine.capture() as events:
        await engine.next_loop()
    return _result(engine, events)


@router.delete("/game/save")
async def clear_save(request: Request):
    """Delete the persisted save and restart."""
    engine = request.app.state.engine
    with engine.capture() as events:
        await engine.clear_save()
    return _result(engine, events)
