"""Core domain models.

Every engine component operates on these types. Pydantic is used for
validation and serialisation at every data boundary: the scene document,
the persisted save, the model directive and the outgoing chat payload.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

STATS = ("stability", "noise", "trust", "awareness")

# Field names used by older saves and by narrators prompted with them.
LEGACY_STAT_NAMES = {
    "train_stability": "stability",
    "reality_noise": "noise",
    "inspector_trust": "trust",
    "anomaly_awareness": "awareness",
}

FlagValue = bool | str | int


# ---------------------------------------------------------------------------
# World state
# ---------------------------------------------------------------------------

HistoryRole = Literal["desc", "user", "npc", "system"]


class DialogEntry(BaseModel):
    """One line of the dialogue history log."""

    role: HistoryRole
    text: str
    scene_title: str = "Unknown scene"
    npc_name: str = ""
    ts: str = ""


class WorldState(BaseModel):
    """The canonical save. Owned exclusively by WorldStore."""

    loop: int = Field(default=1, ge=1)
    stability: int = Field(default=80, ge=0, le=100)
    noise: int = Field(default=0, ge=0, le=100)
    trust: int = Field(default=30, ge=0, le=100)
    awareness: int = Field(default=0, ge=0, le=100)
    flags: dict[str, FlagValue] = Field(default_factory=dict)
    visited: list[str] = Field(default_factory=list)
    current_scene_id: str = "start"
    scene_count: int = Field(default=0, ge=0)
    turn_count: int = Field(default=0, ge=0)
    history: list[DialogEntry] = Field(default_factory=list)

    def value_of(self, key: str) -> Any:
        """Look up a top-level value by name, or None when the key is unknown.

        Legacy stat names are resolved to their current field.
        """
        key = LEGACY_STAT_NAMES.get(key, key)
        if key not in type(self).model_fields:
            return None
        return getattr(self, key)


# ---------------------------------------------------------------------------
# Authored content
# ---------------------------------------------------------------------------

class ChoiceKind(str, Enum):
    DIALOGUE = "dialogue"
    EVENT = "event"
    NAVIGATE = "navigate"
    ACTION = "action"
    IMPLICIT = "implicit"


class Choice(BaseModel):
    """A player option on a scene.

    `type` is the raw authoring tag; use scenes.classify_choice() to get the
    resolved ChoiceKind.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    label: str
    type: str | None = None
    effects: dict[str, float] = Field(default_factory=dict)
    set_flags: dict[str, FlagValue] = Field(default_factory=dict, alias="setFlags")
    ending: str | None = None
    next: str | None = None


class Scene(BaseModel):
    """An immutable authored narrative unit."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str = ""
    text: str = ""
    npc: str | None = None
    npc_sprite: str | None = Field(default=None, alias="npcSprite")
    background: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    conditions: dict[str, Any] | None = None
    random: bool = False


class Location(BaseModel):
    """A fixed, revisitable place the player can navigate between."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    background: str | None = Field(default=None, alias="bg")
    npc_sprite: str | None = Field(default=None, alias="npc")
    npc_type: str | None = Field(default=None, alias="npcType")
    default_scene_id: str | None = Field(default=None, alias="defaultSceneId")


class Ending(BaseModel):
    """A terminal outcome with its eligibility predicate."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    condition: Callable[[WorldState], bool]


# ---------------------------------------------------------------------------
# Narrator exchange
# ---------------------------------------------------------------------------

class Directive(BaseModel):
    """The structured block trailing model-generated narrative.

    Every field is optional. Effect entries that are not numbers are
    dropped, so `next` and `ending` still apply.
    """

    effects: dict[str, float] = Field(default_factory=dict)
    next: str | None = None
    ending: str | None = None

    @field_validator("effects", mode="before")
    @classmethod
    def _numeric_effects(cls, value: Any) -> dict[str, float]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            logger.warning("Ignoring directive effects of type %s", type(value).__name__)
            return {}
        kept = {}
        for key, delta in value.items():
            if isinstance(delta, bool) or not isinstance(delta, (int, float)):
                logger.warning("Ignoring non-numeric directive effect %s=%r", key, delta)
                continue
            kept[key] = delta
        return kept


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatPayload(BaseModel):
    """Request body for the streaming dialogue endpoint."""

    messages: list[ChatMessage]
    model: str
    temperature: float = 0.6
    max_tokens: int = 500
    stream: bool = True


# ---------------------------------------------------------------------------
# Presentation events
# ---------------------------------------------------------------------------

EventType = Literal[
    "scene",
    "location",
    "choices",
    "message",
    "narrative",
    "state",
    "shock",
    "ending",
    "input",
]


class EngineEvent(BaseModel):
    """A notification for the presentation layer. Never persisted."""

    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
