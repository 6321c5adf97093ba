"""Pydantic request models for API endpoints."""

from typing import Literal

from pydantic import BaseModel, Field


class ChatBody(BaseModel):
    message: str


class NavigateBody(BaseModel):
    direction: Literal["prev", "next"]


class SettingsBody(BaseModel):
    """Partial settings update. Omitted fields keep their current value."""

    api_url: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    request_cooldown: float | None = Field(default=None, ge=0)
    stall_timeout: float | None = Field(default=None, gt=0)
    hard_timeout: float | None = Field(default=None, gt=0)
    transition_grace: float | None = Field(default=None, ge=0)
    transition_delay: float | None = Field(default=None, ge=0)
    max_turns: int | None = Field(default=None, ge=1)
    history_limit: int | None = Field(default=None, ge=1)
    recent_history: int | None = Field(default=None, ge=0)
    random_event_chance: float | None = Field(default=None, ge=0, le=1)
    normal_arrival_min_scenes: int | None = Field(default=None, ge=0)
