"""
Session lifecycle engine: create/start/complete/fail/update/delete.

planned -> in_progress -> completed | failed. completed and failed are terminal:
their content cannot be edited and they cannot be deleted. Every operation
re-reads the row scoped to (id, user_id), checks its guard, writes, commits,
and only then records an event (best-effort).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.core.clock import as_utc, isoformat, utcnow
from pullup_trainer.core.errors import (
    ActiveSessionConflictError,
    ImmutableSessionError,
    InfrastructureError,
    InvalidStateError,
    NotFoundError,
    OptimisticLockError,
    ValidationFailedError,
)
from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.models.training_session import TERMINAL_STATUSES, SessionStatus, TrainingSession
from pullup_trainer.schemas.session import SessionComplete, SessionCreate, SessionUpdate, SessionWarning
from pullup_trainer.services.advisories import compute_advisories, conflicts_with_active
from pullup_trainer.services.events import EventRecorder, EventType
from pullup_trainer.services.mappers import warnings_to_list
from pullup_trainer.services.validation import validate_completion, validate_create, validate_update

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    session: TrainingSession
    warnings: list[SessionWarning] = field(default_factory=list)


class SessionLifecycle:
    def __init__(self, session: AsyncSession, *, recorder: EventRecorder | None = None):
        self.session = session
        self.sessions = SessionRepository(session)
        self.recorder = recorder or EventRecorder()

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Commit failed: %s", e)
            raise InfrastructureError("Failed to persist session change", details={"hint": str(e)}) from e

    async def get(self, user_id: str, session_id: str) -> TrainingSession:
        row = await self.sessions.find_by_id(session_id, user_id)
        if row is None:
            raise NotFoundError("Session not found", details={"session_id": session_id})
        return row

    async def list_sessions(
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
        return await self.sessions.list_for_user(
            user_id,
            statuses=statuses,
            date_from=as_utc(date_from),
            date_to=as_utc(date_to),
            ascending=ascending,
            limit=limit,
            offset=offset,
        )

    async def create(self, user_id: str, command: SessionCreate, *, now: datetime | None = None) -> CreateResult:
        now = as_utc(now) or utcnow()
        validate_create(command, now=now)
        status = command.effective_status
        session_date = as_utc(command.session_date)

        active = await self.sessions.find_active(user_id)
        if conflicts_with_active(active, status=status, start_now=command.start_now):
            raise ActiveSessionConflictError(
                details={"active_session_id": active.id, "active_status": active.status}
            )

        advisories = await compute_advisories(self.sessions, user_id, session_date)
        terminal = status in TERMINAL_STATUSES
        row = TrainingSession(
            user_id=user_id,
            status=status,
            session_date=session_date,
            rpe=command.rpe if status == SessionStatus.completed.value else None,
            notes=command.notes,
            is_ai_generated=False,
            is_modified=False,
            ended_at=session_date if terminal else None,
            created_at=now,
            updated_at=now,
        )
        row.sets = command.sets
        await self.sessions.insert(row)
        await self._commit()
        logger.info("Session %s created for user %s (status=%s)", row.id, user_id, status)

        await self.recorder.record(
            user_id,
            EventType.session_created,
            {
                "session_id": row.id,
                "status": status,
                "notes": command.notes,
                "warnings": warnings_to_list(advisories.warnings),
                "rest_info": advisories.rest_info,
            },
        )
        if command.start_now:
            row = await self.begin(row, now=now)
        return CreateResult(session=row, warnings=advisories.warnings)

    async def start(self, user_id: str, session_id: str, *, now: datetime | None = None) -> TrainingSession:
        row = await self.get(user_id, session_id)
        if row.status != SessionStatus.planned.value:
            raise InvalidStateError(
                "Only planned sessions can be started", current_status=row.status, attempted_action="start"
            )
        return await self.begin(row, now=as_utc(now) or utcnow())

    async def begin(
        self, row: TrainingSession, *, now: datetime, event_data: dict | None = None
    ) -> TrainingSession:
        """planned -> in_progress for a row already loaded and checked by the caller."""
        row.status = SessionStatus.in_progress.value
        row.updated_at = now
        await self.sessions.save(row)
        await self._commit()
        logger.info("Session %s started for user %s", row.id, row.user_id)
        await self.recorder.record(row.user_id, EventType.session_started, {"session_id": row.id, **(event_data or {})})
        return row

    async def complete(
        self, user_id: str, session_id: str, body: SessionComplete, *, now: datetime | None = None
    ) -> TrainingSession:
        now = as_utc(now) or utcnow()
        row = await self.get(user_id, session_id)
        if row.status != SessionStatus.in_progress.value:
            raise InvalidStateError(
                "Only in-progress sessions can be completed", current_status=row.status, attempted_action="complete"
            )
        sets = body.sets if body.sets is not None else row.sets
        validate_completion(sets, body.rpe)

        row.sets = sets
        if body.rpe is not None:
            row.rpe = body.rpe
        row.status = SessionStatus.completed.value
        row.ended_at = now
        row.updated_at = now
        await self.sessions.save(row)
        await self._commit()
        logger.info("Session %s completed for user %s (total_reps=%s)", row.id, user_id, row.total_reps)
        await self.recorder.record(
            user_id,
            EventType.session_completed,
            {"session_id": row.id, "total_reps": row.total_reps, "rpe": row.rpe},
        )
        return row

    async def fail(
        self, user_id: str, session_id: str, *, reason: str | None = None, now: datetime | None = None
    ) -> TrainingSession:
        now = as_utc(now) or utcnow()
        row = await self.get(user_id, session_id)
        if row.status != SessionStatus.in_progress.value:
            raise InvalidStateError(
                "Only in-progress sessions can be marked as failed", current_status=row.status, attempted_action="fail"
            )
        row.status = SessionStatus.failed.value
        row.ended_at = now
        row.updated_at = now
        await self.sessions.save(row)
        await self._commit()
        logger.info("Session %s failed for user %s", row.id, user_id)
        await self.recorder.record(user_id, EventType.session_failed, {"session_id": row.id, "reason": reason})
        return row

    async def update(
        self,
        user_id: str,
        session_id: str,
        patch: SessionUpdate,
        *,
        expected_version: int,
        now: datetime | None = None,
    ) -> TrainingSession:
        now = as_utc(now) or utcnow()
        row = await self.get(user_id, session_id)
        if row.version != expected_version:
            raise OptimisticLockError(current=row.version, provided=expected_version)
        if not row.is_active:
            raise ImmutableSessionError(
                "Cannot edit completed or failed sessions", details={"current_status": row.status}
            )
        validate_update(patch, now=now)

        fields = patch.model_fields_set
        if "ai_comment" in fields and not row.is_ai_generated:
            raise ValidationFailedError(
                "Cannot set ai_comment on non-AI-generated sessions",
                code="INVALID_AI_COMMENT",
                details={"ai_comment": ["Only AI-generated sessions carry an AI comment"]},
            )

        changes: dict = {}
        if patch.session_date is not None:
            session_date = as_utc(patch.session_date)
            if session_date != as_utc(row.session_date):
                row.session_date = session_date
                changes["session_date"] = isoformat(session_date)
        if patch.sets is not None and patch.sets != row.sets:
            row.sets = patch.sets
            changes["sets"] = patch.sets
            changes["total_reps"] = row.total_reps
            if row.is_ai_generated:
                row.is_modified = True
        if "notes" in fields:
            row.notes = patch.notes
            changes["notes"] = patch.notes
        if "ai_comment" in fields:
            row.ai_comment = patch.ai_comment
            changes["ai_comment"] = patch.ai_comment
        if patch.mark_as_modified and row.is_ai_generated:
            row.is_modified = True
        row.updated_at = now

        await self.sessions.save(row, expected_version=expected_version)
        await self._commit()
        logger.info("Session %s updated for user %s (%s)", row.id, user_id, ", ".join(changes) or "no field changes")
        await self.recorder.record(
            user_id,
            EventType.session_updated,
            {"session_id": row.id, "notes": row.notes, "changes": changes},
        )
        return row

    async def delete(self, user_id: str, session_id: str) -> None:
        row = await self.get(user_id, session_id)
        if not row.is_active:
            raise ImmutableSessionError(
                "Cannot delete completed or failed sessions", details={"current_status": row.status}
            )
        status = row.status
        await self.sessions.delete(row)
        await self._commit()
        logger.info("Session %s deleted for user %s", session_id, user_id)
        await self.recorder.record(user_id, EventType.session_deleted, {"session_id": session_id, "status": status})
