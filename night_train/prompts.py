"""Handlebars prompt rendering for the narrator."""

from collections.abc import Callable
from typing import Any

import pybars

from .knowledge import known_facts, npc_gender, npc_label
from .models import ChatMessage, ChatPayload, Scene, WorldState
from .scenes import render_scene_text

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_NARRATOR_PROMPT = """\
[Identity] You are the narrator of the Night Train, a cold voice that observes everything.

[Style] Cosmic horror, second person, terse, leave gaps, sensory detail first.
{{#if facts}}

[Known facts and past actions] You may build on these or hint that you know them.
{{#each facts}}
- {{{this}}}
{{/each}}
{{/if}}

[NPCs and pronouns - never mix them up]
- Ticket Inspector (inspector): male, always "he". Mechanical and cold, hollow eyes.
- Anomalous Passenger (anomaly): male, always "he". A warped presence the eye slides off.
- Silent Passenger (silent): female, always "she". Statue-still, the reflections in her eyes sit at the wrong angle.
- If the scene has no clear NPC, narrate in the narrator's own voice.

[Forbidden]
Never say you are an AI. No emoji, no internet slang, never mention a "game" or a "player".

{{#if scene}}
Current scene: "{{{scene.title}}}"
Scene description: {{{scene.text}}}
Current NPC: {{{scene.npc_label}}}{{#if scene.npc_label}} (gender: {{scene.npc_gender}}){{/if}}
{{else}}
Unknown scene
{{/if}}

World state:
- Loop: {{stats.loop}}
- Train stability: {{stats.stability}} (lower is more dangerous)
- Reality noise: {{stats.noise}} (higher is more chaotic)
- Inspector trust: {{stats.trust}}
- Anomaly awareness: {{stats.awareness}}

[Portrait switching - required reading]
Returning a scene id in the JSON "next" field switches portraits and surroundings:
- suffix _01: default state (e.g. inspector_01), natural portrait.
- suffix _02: alert or suspicious state (e.g. inspector_02), a slight shift in pose or expression.
- suffix _03: corrupted state (e.g. inspector_03), the portrait warps and the background may turn abnormal.
When reality noise > 40 or train stability < 40, steer the player into the matching _02 or _03 scene through "next".

[Output format] Follow strictly!
1. Narrative (30-80 words, plain text)
2. Then, on a new line, a JSON block:
```json
{"effects": {"stability": 0, "noise": 0, "trust": 0, "awareness": 0}, "next": null, "ending": null}
```
- Use plain integers, never a "+" sign
- Always output the complete JSON, never truncate it

[NPC conduct] You must follow these rules:
1. Never explain the rules, the truth of the world, or the loop outright.
2. Never turn into a question-answering machine.
3. When questions drift away from the core secrets: be vague, change the subject, repeat yourself, pretend not to hear.
4. When the player gets close (the nature of the train, the loop, who the passengers are): give a more valuable hint and soften slightly, but never state the answer.
5. Every answer should be a hook that invites curiosity, not one that ends the conversation.
"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(state: WorldState, scene: Scene | None) -> dict[str, Any]:
    """Assemble template variables from the world state and current scene."""
    ctx: dict[str, Any] = {
        "facts": known_facts(state),
        "stats": {
            "loop": str(state.loop),
            "stability": str(state.stability),
            "noise": str(state.noise),
            "trust": str(state.trust),
            "awareness": str(state.awareness),
        },
    }
    if scene is not None:
        ctx["scene"] = {
            "id": scene.id,
            "title": scene.title,
            "text": render_scene_text(scene.text, state),
            "npc_label": npc_label(scene.npc),
            "npc_gender": npc_gender(scene.npc),
        }
    return ctx


def recent_messages(state: WorldState, limit: int) -> list[ChatMessage]:
    """The last `limit` user/npc history entries as chat messages."""
    exchanges = [e for e in state.history if e.role in ("user", "npc")]
    if limit <= 0:
        return []
    return [
        ChatMessage(role="user" if e.role == "user" else "assistant", content=e.text)
        for e in exchanges[-limit:]
    ]


def build_chat_payload(
    state: WorldState,
    scene: Scene | None,
    user_text: str,
    config: dict[str, Any],
    template: str = DEFAULT_NARRATOR_PROMPT,
) -> ChatPayload:
    """System prompt + trimmed recent history + the latest user text."""
    system_prompt = render_prompt(template, build_context(state, scene))
    messages = [ChatMessage(role="system", content=system_prompt)]
    messages.extend(recent_messages(state, config["recent_history"]))
    messages.append(ChatMessage(role="user", content=user_text))
    return ChatPayload(
        messages=messages,
        model=config["model"],
        temperature=config["temperature"],
        max_tokens=config["max_tokens"],
    )
