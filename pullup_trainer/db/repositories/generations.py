"""Generation log: the append-only record the quota engine counts."""

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from pullup_trainer.core.errors import InfrastructureError
from pullup_trainer.db.repositories.base import BaseRepository
from pullup_trainer.models.generation import Generation, GenerationStatus
from pullup_trainer.models.generation_error_log import GenerationErrorLog

logger = logging.getLogger(__name__)


class GenerationRepository(BaseRepository):
    async def count_success_since(self, user_id: str, since: datetime) -> int:
        r = await self._execute(
            select(func.count())
            .select_from(Generation)
            .where(
                Generation.user_id == user_id,
                Generation.status == GenerationStatus.success.value,
                Generation.created_at >= since,
            )
        )
        return r.scalar_one()

    async def earliest_success_since(self, user_id: str, since: datetime) -> datetime | None:
        r = await self._execute(
            select(Generation.created_at)
            .where(
                Generation.user_id == user_id,
                Generation.status == GenerationStatus.success.value,
                Generation.created_at >= since,
            )
            .order_by(Generation.created_at.asc())
            .limit(1)
        )
        return r.scalar_one_or_none()

    async def find_by_id(self, generation_id: str, user_id: str) -> Generation | None:
        return await self._scalar(
            select(Generation).where(Generation.id == generation_id, Generation.user_id == user_id)
        )

    async def list_for_user(
        self,
        user_id: str,
        *,
        statuses: list[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[Generation], int]:
        conditions = [Generation.user_id == user_id]
        if statuses:
            conditions.append(Generation.status.in_(statuses))
        count_r = await self._execute(select(func.count()).select_from(Generation).where(*conditions))
        total = count_r.scalar_one()
        r = await self._execute(
            select(Generation)
            .where(*conditions)
            .order_by(Generation.created_at.desc(), Generation.id)
            .limit(limit)
            .offset(offset)
        )
        return list(r.scalars().all()), total

    async def insert(self, generation: Generation) -> Generation:
        self.session.add(generation)
        await self._flush("Failed to record AI generation")
        return generation

    async def insert_error_log(
        self,
        *,
        user_id: str,
        generation_id: str,
        error_type: str,
        error_message: str,
        error_stack: str | None = None,
    ) -> GenerationErrorLog:
        log = GenerationErrorLog(
            user_id=user_id,
            generation_id=generation_id,
            error_type=error_type,
            error_message=error_message[:2000],
            error_stack=error_stack,
        )
        self.session.add(log)
        await self._flush("Failed to record AI generation error")
        return log

    async def _flush(self, message: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("%s: %s", message, e)
            raise InfrastructureError(message, details={"hint": str(e)}) from e
