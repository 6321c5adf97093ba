"""Ending table and priority evaluation.

Endings are checked in ENDING_PRIORITY order and the first whose predicate
holds wins. "normal_arrival" is the fallback: besides its own predicate it
only counts once the scene counter has reached a minimum, so an author's
threshold can never end a loop prematurely. "turn_limit" is outside the
priority list; only the dialogue turn budget triggers it.
"""

import logging

from .models import Ending, WorldState

logger = logging.getLogger(__name__)

NORMAL_ARRIVAL = "normal_arrival"
TURN_LIMIT = "turn_limit"

NORMAL_ARRIVAL_MIN_SCENES = 5
MAX_TURNS = 15

ENDINGS: dict[str, Ending] = {
    e.id: e
    for e in (
        Ending(
            id="train_anomaly",
            title="Critical Instability",
            description=(
                "The carriages buckle and the corridor stretches without end. "
                "The train itself is the anomaly, and you are deep inside it."
            ),
            condition=lambda s: s.stability <= 25,
        ),
        Ending(
            id="detained",
            title="Detained",
            description=(
                "The inspector smiles, satisfied. \"Your cooperation makes this "
                "simple. Come with me.\" Your limbs stop answering you."
            ),
            condition=lambda s: s.trust >= 75 and s.noise < 60,
        ),
        Ending(
            id="awakening",
            title="Awakening",
            description=(
                "You see through the train: the loop, the passengers, the "
                "destination. You choose to break the cage."
            ),
            condition=lambda s: s.noise >= 90 or s.awareness >= 90,
        ),
        Ending(
            id=NORMAL_ARRIVAL,
            title="Normal Arrival",
            description=(
                "The train eases into a station. You step onto an unfamiliar "
                "platform and know you will be boarding again soon."
            ),
            condition=lambda s: s.scene_count >= 50,
        ),
        Ending(
            id=TURN_LIMIT,
            title="End of the Line",
            description=(
                "The train slows. A wave of vertigo.\n\n"
                "...If you rode again, would you ask different questions?"
            ),
            condition=lambda s: s.turn_count >= MAX_TURNS,
        ),
    )
}

ENDING_PRIORITY = ["train_anomaly", "detained", "awakening", NORMAL_ARRIVAL]


def evaluate_endings(
    state: WorldState,
    min_scenes: int = NORMAL_ARRIVAL_MIN_SCENES,
) -> str | None:
    """Return the id of the highest-priority ending that applies, or None."""
    for ending_id in ENDING_PRIORITY:
        ending = ENDINGS[ending_id]
        if not ending.condition(state):
            continue
        if ending_id == NORMAL_ARRIVAL and state.scene_count < min_scenes:
            continue
        return ending_id
    return None


def get_ending(ending_id: str | None) -> Ending | None:
    if not ending_id:
        return None
    ending = ENDINGS.get(ending_id)
    if ending is None:
        logger.warning("Unknown ending id %r", ending_id)
    return ending


def ending_summary(ending: Ending, state: WorldState) -> dict:
    """Presentation payload for a triggered ending."""
    return {
        "id": ending.id,
        "title": ending.title,
        "description": ending.description,
        "stats": {
            "loop": state.loop,
            "scene_count": state.scene_count,
            "stability": state.stability,
            "noise": state.noise,
        },
    }
