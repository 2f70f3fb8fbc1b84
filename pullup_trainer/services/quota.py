"""
Rolling-window AI generation quota. Only successful generations count.

The count and the earliest-timestamp lookup are two independent reads; under
concurrent generations the figures may be slightly stale, which at worst lets
one extra generation through.
"""

from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.config import settings
from pullup_trainer.core.clock import as_utc, utcnow
from pullup_trainer.db.repositories.generations import GenerationRepository
from pullup_trainer.schemas.generation import AiQuota


async def get_quota(
    session: AsyncSession,
    user_id: str,
    *,
    now: datetime | None = None,
    limit: int | None = None,
    window_hours: int | None = None,
) -> AiQuota:
    now = as_utc(now) or utcnow()
    limit = settings.ai_generation_limit if limit is None else limit
    window = timedelta(hours=window_hours or settings.ai_window_hours)
    since = now - window
    repo = GenerationRepository(session)

    used = await repo.count_success_since(user_id, since)
    remaining = max(0, limit - used)

    earliest = await repo.earliest_success_since(user_id, since) if used >= limit else None
    if earliest is not None:
        resets_at = as_utc(earliest) + window
        next_window_seconds = max(0, int((resets_at - now).total_seconds()))
    else:
        resets_at = now + window
        next_window_seconds = int(window.total_seconds())

    return AiQuota(
        remaining=remaining,
        limit=limit,
        resets_at=resets_at,
        next_window_seconds=next_window_seconds,
    )
