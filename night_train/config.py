"""Engine configuration (narrator connection, timings, budgets).

get_config() returns defaults merged with the stored config.json, then
environment overrides. update_config() applies a partial update: known keys
are overwritten, unknown keys are ignored, and the result is persisted.

Environment overrides (read from the process environment or .env):
  NIGHTTRAIN_API_URL   → api_url
  NIGHTTRAIN_MODEL     → model
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "api_url": "http://localhost:3001/api/chat",
    "model": "meta/llama-3.1-70b-instruct",
    "temperature": 0.6,
    "max_tokens": 500,
    "request_cooldown": 1.5,
    "stall_timeout": 15.0,
    "hard_timeout": 45.0,
    "transition_grace": 1.5,
    "transition_delay": 0.3,
    "max_turns": 15,
    "history_limit": 50,
    "recent_history": 6,
    "random_event_chance": 0.1,
    "normal_arrival_min_scenes": 5,
}

_ENV_OVERRIDES = {
    "NIGHTTRAIN_API_URL": "api_url",
    "NIGHTTRAIN_MODEL": "model",
}


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _read_stored(data_dir: Path) -> dict[str, Any]:
    path = _config_path(data_dir)
    if not path.is_file():
        return {}
    try:
        stored = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    return stored if isinstance(stored, dict) else {}


def _same_kind(default: Any, value: Any) -> bool:
    """Whether a stored value can stand in for the default's type (ints pass as floats)."""
    if isinstance(value, bool) or isinstance(default, bool):
        return type(value) is type(default)
    if isinstance(default, float):
        return isinstance(value, (int, float))
    return isinstance(value, type(default))


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env overrides."""
    config = dict(_CONFIG_DEFAULTS)
    for key, value in _read_stored(data_dir).items():
        if key not in config:
            continue
        if not _same_kind(config[key], value):
            logger.warning(f"Ignoring stored setting {key}={value!r}: wrong type")
            continue
        config[key] = value
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config[key] = value
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into the stored config and persist. Returns full config."""
    stored = _read_stored(data_dir)
    for key, value in fields.items():
        if key in _CONFIG_DEFAULTS:
            stored[key] = value
    data_dir.mkdir(parents=True, exist_ok=True)
    _config_path(data_dir).write_text(json.dumps(stored, indent=2))
    return get_config(data_dir)


def default_config() -> dict[str, Any]:
    """A fresh copy of the built-in defaults, without stored or env values."""
    return dict(_CONFIG_DEFAULTS)
