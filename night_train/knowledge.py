"""Static narrator knowledge: flag facts and NPC profiles.

FLAG_FACTS maps a flag key to the fact the narrator may draw on once the
flag is set. It is read-only; the engine never writes to it.
"""

from .models import WorldState

FLAG_FACTS: dict[str, str] = {
    "met_inspector": "The player has already met the ticket inspector.",
    "stared_inspector": "The player stared the inspector in the eye and put him on guard.",
    "confused_destination": "The player admitted confusion about the destination.",
    "broke_loop_illusion": "The player tried to break the illusion of the loop.",
    "approached_anomaly": "The player deliberately approached the anomalous passenger.",
    "watched_anomaly": "The player watched the anomalous passenger from a distance.",
    "questioned_anomaly": "The player asked the anomalous passenger who he is.",
    "touched_anomaly": "The player made physical contact with the anomalous passenger.",
    "denied_reality": "The player tried to deny the anomaly in front of them.",
    "talked_to_silent": "The player tried to talk to the silent passenger.",
    "sat_with_silent": "The player sat beside the silent passenger.",
    "silent_acknowledged": "The silent passenger responded to the player.",
    "saw_note": "The player spotted a hidden note.",
    "has_note": "The player holds the note with the truth written on it.",
    "destroyed_note": "The player destroyed the note.",
    "betrayed_self": "The player handed the note to the inspector.",
    "mirror_contact": "The player interacted with the reflection in the window.",
    "broke_boundary": "The player tried to smash a window to get off the train.",
}

# npc type → (label, gender)
NPC_PROFILES: dict[str, tuple[str, str]] = {
    "inspector": ("Ticket Inspector", "male"),
    "anomaly": ("Anomalous Passenger", "male"),
    "silent": ("Silent Passenger", "female"),
    "none": ("", "none"),
}


def known_facts(state: WorldState) -> list[str]:
    """Facts for every truthy flag that has a knowledge entry."""
    return [
        FLAG_FACTS[key]
        for key, value in state.flags.items()
        if value and key in FLAG_FACTS
    ]


def npc_label(npc_type: str | None) -> str:
    if npc_type in NPC_PROFILES:
        return NPC_PROFILES[npc_type][0]
    return npc_type or ""


def npc_gender(npc_type: str | None) -> str:
    profile = NPC_PROFILES.get(npc_type or "none")
    return profile[1] if profile else "unknown"
