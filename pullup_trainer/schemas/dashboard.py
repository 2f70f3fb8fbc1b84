from typing import Any

from pydantic import BaseModel

from pullup_trainer.schemas.generation import AiQuota


class DashboardCta(BaseModel):
    primary: str
    secondary: str


class DashboardSnapshot(BaseModel):
    active_session: dict[str, Any] | None = None
    last_completed_session: dict[str, Any] | None = None
    ai_quota: AiQuota
    cta: DashboardCta
