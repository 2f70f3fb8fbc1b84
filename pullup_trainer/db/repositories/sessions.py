"""Session store: the read/check/write operations the lifecycle engine relies on."""

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from pullup_trainer.core.errors import ActiveSessionConflictError, InfrastructureError, OptimisticLockError
from pullup_trainer.db.repositories.base import BaseRepository
from pullup_trainer.models.training_session import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    SessionStatus,
    TrainingSession,
)

logger = logging.getLogger(__name__)

ACTIVE_INDEX_NAME = "uq_sessions_user_active"


def is_active_session_violation(exc: IntegrityError) -> bool:
    """True if the integrity error comes from the one-active-session-per-user index."""
    msg = str(getattr(exc, "orig", exc))
    return ACTIVE_INDEX_NAME in msg or "sessions.user_id" in msg


class SessionRepository(BaseRepository):
    async def find_by_id(self, session_id: str, user_id: str) -> TrainingSession | None:
        return await self._scalar(
            select(TrainingSession).where(
                TrainingSession.id == session_id,
                TrainingSession.user_id == user_id,
            )
        )

    async def find_active(self, user_id: str) -> TrainingSession | None:
        r = await self._execute(
            select(TrainingSession)
            .where(
                TrainingSession.user_id == user_id,
                TrainingSession.status.in_(ACTIVE_STATUSES),
            )
            .order_by(TrainingSession.session_date.asc())
            .limit(1)
        )
        return r.scalars().first()

    async def find_recent_terminal_within(
        self, user_id: str, window_start: datetime, window_end: datetime | None = None
    ) -> TrainingSession | None:
        """Latest terminal session whose end falls in [window_start, window_end]."""
        q = select(TrainingSession).where(
            TrainingSession.user_id == user_id,
            TrainingSession.status.in_(TERMINAL_STATUSES),
            TrainingSession.ended_at >= window_start,
        )
        if window_end is not None:
            q = q.where(TrainingSession.ended_at <= window_end)
        r = await self._execute(q.order_by(TrainingSession.ended_at.desc()).limit(1))
        return r.scalars().first()

    async def find_last_completed(self, user_id: str) -> TrainingSession | None:
        r = await self._execute(
            select(TrainingSession)
            .where(
                TrainingSession.user_id == user_id,
                TrainingSession.status == SessionStatus.completed.value,
            )
            .order_by(TrainingSession.session_date.desc())
            .limit(1)
        )
        return r.scalars().first()

    async def count_same_day(self, user_id: str, day_start: datetime, day_end: datetime) -> int:
        r = await self._execute(
            select(func.count())
            .select_from(TrainingSession)
            .where(
                TrainingSession.user_id == user_id,
                TrainingSession.session_date >= day_start,
                TrainingSession.session_date < day_end,
            )
        )
        return r.scalar_one()

    async def list_recent_terminal(self, user_id: str, limit: int = 10) -> list[TrainingSession]:
        r = await self._execute(
            select(TrainingSession)
            .where(
                TrainingSession.user_id == user_id,
                TrainingSession.status.in_(TERMINAL_STATUSES),
            )
            .order_by(TrainingSession.session_date.desc())
            .limit(limit)
        )
        return list(r.scalars().all())

    async def list_for_user(
        self,
        user_id: str,
        *,
        statuses: list[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        ascending: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TrainingSession], int]:
        conditions = [TrainingSession.user_id == user_id]
        if statuses:
            conditions.append(TrainingSession.status.in_(statuses))
        if date_from is not None:
            conditions.append(TrainingSession.session_date >= date_from)
        if date_to is not None:
            conditions.append(TrainingSession.session_date <= date_to)

        count_r = await self._execute(select(func.count()).select_from(TrainingSession).where(*conditions))
        total = count_r.scalar_one()

        order = TrainingSession.session_date.asc() if ascending else TrainingSession.session_date.desc()
        r = await self._execute(
            select(TrainingSession).where(*conditions).order_by(order, TrainingSession.id).limit(limit).offset(offset)
        )
        return list(r.scalars().all()), total

    async def insert(self, row: TrainingSession) -> TrainingSession:
        """Insert a new session. A hit on the active-session index becomes ActiveSessionConflictError."""
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            if is_active_session_violation(e):
                logger.info("Active session index rejected insert for user %s", row.user_id)
                raise ActiveSessionConflictError() from e
            raise InfrastructureError("Failed to create session", details={"hint": str(e.orig)}) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise InfrastructureError("Failed to create session", details={"hint": str(e)}) from e
        return row

    async def save(self, row: TrainingSession, *, expected_version: int | None = None) -> TrainingSession:
        """Flush pending changes; the UPDATE is conditional on the loaded version."""
        loaded_version = row.version
        try:
            await self.session.flush()
        except StaleDataError as e:
            await self.session.rollback()
            logger.info("Stale write rejected for session %s (version %s)", row.id, loaded_version)
            raise OptimisticLockError(current=None, provided=expected_version or loaded_version) from e
        except IntegrityError as e:
            await self.session.rollback()
            if is_active_session_violation(e):
                raise ActiveSessionConflictError() from e
            raise InfrastructureError("Failed to update session", details={"hint": str(e.orig)}) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise InfrastructureError("Failed to update session", details={"hint": str(e)}) from e
        return row

    async def delete(self, row: TrainingSession) -> None:
        loaded_version = row.version
        try:
            await self.session.delete(row)
            await self.session.flush()
        except StaleDataError as e:
            await self.session.rollback()
            raise OptimisticLockError(current=None, provided=loaded_version) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise InfrastructureError("Failed to delete session", details={"hint": str(e)}) from e
