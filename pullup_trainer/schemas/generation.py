"""Schemas for AI session generation and quota."""

from datetime import datetime

from pydantic import BaseModel, Field


class AiGenerateRequest(BaseModel):
    """max_pullups is required only when the user has no finished sessions yet."""

    max_pullups: int | None = Field(None, ge=1, le=60)
    model: str | None = Field(None, max_length=128)
    start_now: bool = False


class AiQuota(BaseModel):
    remaining: int
    limit: int
    resets_at: datetime
    next_window_seconds: int


class GeneratedPlan(BaseModel):
    """Opaque generator output: five sets, a coaching comment, wall time."""

    sets: list[int]
    comment: str
    duration_ms: int = 0
    session_date: datetime | None = None
