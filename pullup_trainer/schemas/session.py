"""Pydantic schemas for the sessions API. Business rules live in services/validation.py."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class WarningType(str, Enum):
    rest_period = "REST_PERIOD"
    multiple_same_day = "MULTIPLE_SAME_DAY"
    active_session_exists = "ACTIVE_SESSION_EXISTS"


class SessionWarning(BaseModel):
    type: WarningType
    message: str


class SessionCreate(BaseModel):
    """Body for creating a session. status defaults to planned when omitted."""

    session_date: datetime
    sets: list[int | None]
    status: Literal["planned", "completed", "failed"] | None = None
    rpe: int | None = None
    notes: str | None = None
    start_now: bool = False

    @property
    def effective_status(self) -> str:
        return self.status or "planned"


class SessionUpdate(BaseModel):
    """Body for editing a planned or in-progress session (partial)."""

    session_date: datetime | None = None
    sets: list[int | None] | None = None
    notes: str | None = None
    ai_comment: str | None = None
    mark_as_modified: bool = False


class SessionComplete(BaseModel):
    """Body for completing a session; omitted sets keep the stored ones."""

    sets: list[int | None] | None = None
    rpe: int | None = None


class SessionFail(BaseModel):
    reason: str | None = Field(None, max_length=500)


class LastCompletedSession(BaseModel):
    id: str
    hours_since: int


class PreflightResult(BaseModel):
    blocking: bool
    warnings: list[SessionWarning]
    last_completed_session: LastCompletedSession | None = None
