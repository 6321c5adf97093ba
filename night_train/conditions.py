"""Condition predicates over WorldState.

A condition set is a dict. The "flags" key maps flag names to required
values (exact equality). Every other key names a WorldState value and maps to
either a number (exact match) or a bounds object using any of
min/max/gte/lte, all inclusive:

    {"flags": {"has_note": true}, "noise": {"min": 40}, "loop": 2}

All supplied requirements must hold. A key that names no known state value
is skipped rather than failing the condition.
"""

from typing import Any

from .models import WorldState

_BOUND_CHECKS = {
    "min": lambda value, bound: value >= bound,
    "gte": lambda value, bound: value >= bound,
    "max": lambda value, bound: value <= bound,
    "lte": lambda value, bound: value <= bound,
}


def check_conditions(conditions: dict[str, Any] | None, state: WorldState) -> bool:
    """Return True when every requirement in `conditions` holds for `state`."""
    if not conditions:
        return True

    for key, requirement in conditions.items():
        if key == "flags":
            for flag_name, flag_value in (requirement or {}).items():
                if state.flags.get(flag_name) != flag_value:
                    return False
            continue

        value = state.value_of(key)
        if value is None:
            continue

        if isinstance(requirement, (int, float)):
            if value != requirement:
                return False
        elif isinstance(requirement, dict):
            for bound_name, check in _BOUND_CHECKS.items():
                bound = requirement.get(bound_name)
                if bound is not None and not check(value, bound):
                    return False

    return True
