"""
Read-only preflight check run before a create. Uses the same predicates as
SessionLifecycle.create, so "blocking" here means create would be rejected.
"""

import math
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.core.clock import as_utc, utcnow
from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.models.training_session import SessionStatus
from pullup_trainer.schemas.session import LastCompletedSession, PreflightResult
from pullup_trainer.services.advisories import (
    active_session_warning,
    compute_advisories,
    conflicts_with_active,
    hours_between,
)


async def run_preflight(
    session: AsyncSession,
    user_id: str,
    *,
    session_date: datetime,
    status: str = SessionStatus.planned.value,
    ignore_rest_warning: bool = False,
    now: datetime | None = None,
) -> PreflightResult:
    now = as_utc(now) or utcnow()
    repo = SessionRepository(session)

    active = await repo.find_active(user_id)
    blocking = conflicts_with_active(active, status=status)
    warnings = [active_session_warning(active)] if blocking else []

    advisories = await compute_advisories(repo, user_id, session_date, include_rest=not ignore_rest_warning)
    warnings.extend(advisories.warnings)

    last_completed = None
    last = await repo.find_last_completed(user_id)
    if last is not None and last.ended_at is not None:
        last_completed = LastCompletedSession(
            id=last.id,
            hours_since=math.floor(hours_between(last.ended_at, now)),
        )
    return PreflightResult(blocking=blocking, warnings=warnings, last_completed_session=last_completed)
