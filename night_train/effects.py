"""Numeric stat effects and flag assignment.

apply_effects() adds deltas to the four bounded stats and clamps each result
into [0, 100]. Keys outside the stat set (flags, counters, unknown names) are
ignored. A large stability drop or noise spike in a single application is
reported as a shock so the presentation layer can react to it; the shock is
not stored anywhere in the state.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from .models import LEGACY_STAT_NAMES, STATS, FlagValue, WorldState

logger = logging.getLogger(__name__)

STAT_MIN = 0
STAT_MAX = 100

SHOCK_STABILITY_DROP = 10
SHOCK_NOISE_RISE = 15


class EffectResult(BaseModel):
    """What a single apply_effects() call changed."""

    changes: dict[str, int] = Field(default_factory=dict)
    shock: bool = False


def clamp(value: float, low: int = STAT_MIN, high: int = STAT_MAX) -> int:
    return int(max(low, min(high, value)))


def apply_effects(state: WorldState, deltas: dict[str, Any]) -> EffectResult:
    """Apply stat deltas to `state` in place and report what changed."""
    prev_stability = state.stability
    prev_noise = state.noise
    changes: dict[str, int] = {}

    for key, delta in deltas.items():
        stat = LEGACY_STAT_NAMES.get(key, key)
        if stat not in STATS:
            continue
        if isinstance(delta, bool) or not isinstance(delta, (int, float)):
            logger.warning("Ignoring non-numeric effect %s=%r", key, delta)
            continue
        before = getattr(state, stat)
        after = clamp(before + round(delta))
        setattr(state, stat, after)
        if after != before:
            changes[stat] = after - before

    shock = (
        prev_stability - state.stability >= SHOCK_STABILITY_DROP
        or state.noise - prev_noise >= SHOCK_NOISE_RISE
    )
    return EffectResult(changes=changes, shock=shock)


def set_flags(state: WorldState, assignments: dict[str, FlagValue]) -> None:
    """Shallow-merge flag assignments; existing flags not named are kept."""
    state.flags.update(assignments)
