"""Player hints ("thoughts") derived from the world state.

Entries are evaluated in order; every matching entry is shown. A later entry
with the same id replaces the earlier one's text but keeps its position.
"""

from collections.abc import Callable

from .models import WorldState

Thought = tuple[str, str, Callable[[WorldState], bool]]

THOUGHTS: list[Thought] = [
    # Early game
    ("goal1", "Maybe I should look for my ticket...",
     lambda s: s.loop == 1 and not s.flags.get("has_note") and s.scene_count < 3),
    ("explore", "Try walking through the carriage.", lambda s: s.scene_count < 2),
    ("talk", "You can simply type what you want to say.", lambda s: s.turn_count < 3),

    # Location-aware
    ("inspector_hint", "The inspector is waiting for your ticket.",
     lambda s: s.current_scene_id == "inspector_area" and not s.flags.get("met_inspector")),
    ("anomaly_hint", "That passenger... something is wrong with him.",
     lambda s: s.current_scene_id == "anomaly_area" and not s.flags.get("approached_anomaly")),
    ("silent_hint", "The silent passenger seems to be holding something.",
     lambda s: s.current_scene_id == "silent_area" and not s.flags.get("saw_note")),

    # Progress
    ("note_hint", "What was written on that note...",
     lambda s: bool(s.flags.get("saw_note")) and not s.flags.get("has_note")),
    ("truth_hint", "Maybe ask the others what they know.",
     lambda s: bool(s.flags.get("has_note"))),

    # Danger
    ("stability_warn", "The train is shaking... what happened?", lambda s: s.stability < 50),
    ("noise_warn", "Everything around you is starting to blur...", lambda s: s.noise > 60),

    # Later loops
    ("loop_memory", "All of this... feels familiar.", lambda s: s.loop >= 2),
    ("loop_differ", "Maybe try something different this time.",
     lambda s: s.loop >= 2 and s.scene_count < 3),
    ("destination", "Will this train... ever arrive?", lambda s: True),
]


def current_thoughts(state: WorldState) -> list[dict[str, str]]:
    shown: dict[str, str] = {}
    for thought_id, text, condition in THOUGHTS:
        if condition(state):
            shown[thought_id] = text
    return [{"id": k, "text": v} for k, v in shown.items()]
