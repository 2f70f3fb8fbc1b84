"""
AI-assisted session generation: feature gate, quota, active-session guard,
generator call, and the generation log that the quota is computed from.
Failed attempts are logged (generation row + error log) but never count
toward the quota, which only counts successes.
"""

import logging
import math
import time
import traceback
from dataclasses import dataclass
from datetime import datetime

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.config import settings
from pullup_trainer.core.clock import as_utc, isoformat, utcnow
from pullup_trainer.core.errors import (
    ActiveSessionConflictError,
    GenerationAlreadySucceededError,
    GenerationFailedError,
    GenerationTimeoutError,
    InfrastructureError,
    NotFoundError,
    QuotaExceededError,
    ValidationFailedError,
)
from pullup_trainer.core.feature_flags import AI_GENERATION, FeatureFlags
from pullup_trainer.db.repositories.generations import GenerationRepository
from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.models.generation import Generation, GenerationStatus
from pullup_trainer.models.training_session import SessionStatus, TrainingSession
from pullup_trainer.schemas.generation import AiGenerateRequest, GeneratedPlan
from pullup_trainer.services.advisories import conflicts_with_active
from pullup_trainer.services.events import EventRecorder, EventType
from pullup_trainer.services.generators import GeneratorError, GeneratorTimeout, SessionGenerator
from pullup_trainer.services.lifecycle import SessionLifecycle
from pullup_trainer.services.quota import get_quota
from pullup_trainer.services.validation import MAX_REPS, MIN_REPS

logger = logging.getLogger(__name__)

GENERATION_ATTEMPTS = Counter(
    "pullup_ai_generation_attempts_total",
    "AI session generation attempts by outcome",
    ["status"],
)

HISTORY_SIZE = 10


def clamp_reps(value: float | int) -> int:
    return max(MIN_REPS, min(MAX_REPS, int(round(value))))


def estimate_max_pullups(history: list[TrainingSession]) -> int:
    """Best single set across recent sessions; the starting point for an existing user's plan."""
    best = max((v for row in history for v in row.sets if v), default=MIN_REPS)
    return clamp_reps(best)


def history_for_prompt(history: list[TrainingSession]) -> list[dict]:
    return [
        {
            "session_date": isoformat(row.session_date),
            "status": row.status,
            "sets": [v or 0 for v in row.sets],
            "total_reps": row.total_reps,
            "rpe": row.rpe,
        }
        for row in history
    ]


@dataclass
class GenerationResult:
    session: TrainingSession
    generation: Generation


class GenerationService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        generator: SessionGenerator,
        flags: FeatureFlags,
        recorder: EventRecorder | None = None,
    ):
        self.session = session
        self.generator = generator
        self.flags = flags
        self.recorder = recorder or EventRecorder()
        self.sessions = SessionRepository(session)
        self.generations = GenerationRepository(session)

    async def generate(
        self, user_id: str, request: AiGenerateRequest, *, now: datetime | None = None
    ) -> GenerationResult:
        return await self._run(
            user_id,
            max_pullups=request.max_pullups,
            model=request.model or settings.generation_model,
            start_now=request.start_now,
            now=as_utc(now) or utcnow(),
        )

    async def retry(self, user_id: str, generation_id: str, *, now: datetime | None = None) -> GenerationResult:
        """Re-run a failed attempt with the max pull-ups it was originally asked for."""
        self.flags.require(AI_GENERATION)
        previous = await self.generations.find_by_id(generation_id, user_id)
        if previous is None:
            raise NotFoundError(
                "Generation not found", code="GENERATION_NOT_FOUND", details={"generation_id": generation_id}
            )
        if previous.status == GenerationStatus.success.value:
            raise GenerationAlreadySucceededError(
                "Generation already succeeded", details={"generation_id": generation_id, "session_id": previous.session_id}
            )
        max_pullups = (previous.prompt_data or {}).get("max_pullups")
        if not isinstance(max_pullups, int) or not (MIN_REPS <= max_pullups <= MAX_REPS):
            raise ValidationFailedError(
                "Stored prompt data cannot be retried",
                code="INVALID_PROMPT_DATA",
                details={"prompt_data": ["max_pullups is missing or out of range"]},
            )
        return await self._run(
            user_id,
            max_pullups=max_pullups,
            model=previous.model,
            start_now=False,
            now=as_utc(now) or utcnow(),
            retry_of=previous.id,
        )

    async def history(
        self, user_id: str, *, statuses: list[str] | None = None, limit: int = 10, offset: int = 0
    ) -> tuple[list[Generation], int]:
        return await self.generations.list_for_user(user_id, statuses=statuses, limit=limit, offset=offset)

    async def _run(
        self,
        user_id: str,
        *,
        max_pullups: int | None,
        model: str,
        start_now: bool,
        now: datetime,
        retry_of: str | None = None,
    ) -> GenerationResult:
        self.flags.require(AI_GENERATION)

        quota = await get_quota(self.session, user_id, now=now)
        if quota.remaining == 0:
            hours = math.ceil(quota.next_window_seconds / 3600)
            raise QuotaExceededError(
                f"AI session limit reached ({quota.limit}/{quota.limit}). Resets in {hours} hours.",
                details={
                    "limit": quota.limit,
                    "resets_at": quota.resets_at.isoformat(),
                    "next_window_seconds": quota.next_window_seconds,
                },
            )

        active = await self.sessions.find_active(user_id)
        if conflicts_with_active(active, status=SessionStatus.planned.value, start_now=start_now):
            raise ActiveSessionConflictError(
                details={"active_session_id": active.id, "active_status": active.status}
            )

        history = await self.sessions.list_recent_terminal(user_id, limit=HISTORY_SIZE)
        if not history and max_pullups is None:
            raise ValidationFailedError(
                "Max pull-ups is required for new users",
                code="MAX_PULLUPS_REQUIRED",
                details={"max_pullups": ["Required when there are no finished sessions yet"]},
            )
        effective_max = clamp_reps(max_pullups) if max_pullups is not None else estimate_max_pullups(history)
        prompt_data = {
            "mode": "existing_user" if history else "new_user",
            "max_pullups": effective_max,
            "session_ids": [row.id for row in history],
            "today": now.isoformat(),
        }
        if retry_of:
            prompt_data["retry_of"] = retry_of

        started = time.monotonic()
        try:
            plan = await self.generator.generate(
                max_pullups=effective_max, history=history_for_prompt(history), model=model
            )
            sets = self._normalize_sets(plan)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            raise await self._record_failure(user_id, model, duration_ms, prompt_data, e, now=now) from e
        duration_ms = plan.duration_ms or int((time.monotonic() - started) * 1000)

        row = TrainingSession(
            user_id=user_id,
            status=SessionStatus.planned.value,
            session_date=as_utc(plan.session_date) or now,
            rpe=None,
            is_ai_generated=True,
            is_modified=False,
            ai_comment=plan.comment.strip(),
            created_at=now,
            updated_at=now,
        )
        row.sets = sets
        await self.sessions.insert(row)
        generation = Generation(
            user_id=user_id,
            model=model,
            status=GenerationStatus.success.value,
            duration_ms=duration_ms,
            prompt_data=prompt_data,
            response_data={"sets": sets, "comment": row.ai_comment},
            session_id=row.id,
            created_at=now,
        )
        await self.generations.insert(generation)
        await self._commit()
        GENERATION_ATTEMPTS.labels(status=GenerationStatus.success.value).inc()
        logger.info("AI session %s generated for user %s in %dms (model=%s)", row.id, user_id, duration_ms, model)

        await self.recorder.record(
            user_id,
            EventType.session_created,
            {"session_id": row.id, "status": row.status, "is_ai_generated": True, "generation_id": generation.id},
        )
        if start_now:
            lifecycle = SessionLifecycle(self.session, recorder=self.recorder)
            row = await lifecycle.begin(row, now=now, event_data={"generation_id": generation.id})
        return GenerationResult(session=row, generation=generation)

    @staticmethod
    def _normalize_sets(plan: GeneratedPlan) -> list[int]:
        if len(plan.sets) != 5:
            raise GeneratorError(f"Expected 5 sets, got {len(plan.sets)}")
        if not plan.comment or not plan.comment.strip():
            raise GeneratorError("Generated plan has no comment")
        return [clamp_reps(v) for v in plan.sets]

    async def _record_failure(
        self, user_id: str, model: str, duration_ms: int, prompt_data: dict, error: Exception, *, now: datetime
    ) -> GenerationFailedError:
        """Log the failed attempt and return the error to raise to the caller."""
        timed_out = isinstance(error, (GeneratorTimeout, TimeoutError))
        status = GenerationStatus.timeout.value if timed_out else GenerationStatus.error.value
        GENERATION_ATTEMPTS.labels(status=status).inc()
        logger.warning("AI generation failed for user %s (%s): %s", user_id, status, error)

        details: dict = {}
        try:
            generation = Generation(
                user_id=user_id,
                model=model,
                status=status,
                duration_ms=duration_ms,
                prompt_data=prompt_data,
                response_data=None,
                created_at=now,
            )
            await self.generations.insert(generation)
            await self.generations.insert_error_log(
                user_id=user_id,
                generation_id=generation.id,
                error_type=type(error).__name__,
                error_message=str(error) or type(error).__name__,
                error_stack="".join(traceback.format_exception(error)),
            )
            await self._commit()
            details["generation_id"] = generation.id
        except InfrastructureError as e:
            logger.error("Could not record failed generation for user %s: %s", user_id, e)
            details["logging"] = "failed to record generation attempt"

        if timed_out:
            return GenerationTimeoutError("AI provider timed out", details=details)
        if isinstance(error, GeneratorError):
            return GenerationFailedError(f"AI provider returned an unusable plan: {error}", details=details)
        return GenerationFailedError("Failed to contact AI provider", details=details)

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise InfrastructureError("Failed to persist AI generation", details={"hint": str(e)}) from e
