"""Dashboard snapshot: active session, last completed session, AI quota and suggested actions."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.models.training_session import SessionStatus, TrainingSession
from pullup_trainer.schemas.dashboard import DashboardCta, DashboardSnapshot
from pullup_trainer.schemas.generation import AiQuota
from pullup_trainer.services.mappers import session_to_detail, session_to_dict
from pullup_trainer.services.quota import get_quota


def pick_cta(active: TrainingSession | None, quota: AiQuota) -> DashboardCta:
    if active is not None:
        if active.status == SessionStatus.planned.value:
            return DashboardCta(primary="Start session", secondary="Edit session")
        return DashboardCta(primary="Complete session", secondary="Fail session")
    if quota.remaining == 0:
        return DashboardCta(primary="Create manually", secondary="View history")
    return DashboardCta(primary="Create with AI", secondary="Create manually")


async def get_dashboard(session: AsyncSession, user_id: str, *, now: datetime | None = None) -> DashboardSnapshot:
    repo = SessionRepository(session)
    active = await repo.find_active(user_id)
    last_completed = await repo.find_last_completed(user_id)
    quota = await get_quota(session, user_id, now=now)
    return DashboardSnapshot(
        active_session=session_to_detail(active) if active else None,
        last_completed_session=session_to_dict(last_completed) if last_completed else None,
        ai_quota=quota,
        cta=pick_cta(active, quota),
    )
