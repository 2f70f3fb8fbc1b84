"""AI generation flow: gate, quota, active-session guard, generation log and retry."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from pullup_trainer.core.errors import (
    ActiveSessionConflictError,
    FeatureDisabledError,
    GenerationAlreadySucceededError,
    GenerationFailedError,
    GenerationTimeoutError,
    NotFoundError,
    QuotaExceededError,
    ValidationFailedError,
)
from pullup_trainer.core.feature_flags import FeatureFlags
from pullup_trainer.models.event import Event
from pullup_trainer.models.generation import Generation
from pullup_trainer.models.generation_error_log import GenerationErrorLog
from pullup_trainer.models.training_session import TrainingSession
from pullup_trainer.schemas.generation import AiGenerateRequest, GeneratedPlan
from pullup_trainer.schemas.session import SessionCreate
from pullup_trainer.services.generation import GenerationService, estimate_max_pullups
from pullup_trainer.services.generators import GeneratorError, GeneratorTimeout, MockGenerator
from pullup_trainer.services.lifecycle import SessionLifecycle
from pullup_trainer.services.quota import get_quota

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _service(db_session, generator=None, enabled=True) -> GenerationService:
    return GenerationService(
        db_session,
        generator=generator or MockGenerator(),
        flags=FeatureFlags(ai_generation_enabled=enabled),
    )


def _failing(error: Exception):
    generator = AsyncMock()
    generator.generate.side_effect = error
    return generator


async def _count(db_session, model) -> int:
    r = await db_session.execute(select(func.count()).select_from(model))
    return r.scalar_one()


@pytest.mark.asyncio
async def test_new_user_must_provide_max_pullups(db_session, user_id):
    with pytest.raises(ValidationFailedError) as exc_info:
        await _service(db_session).generate(user_id, AiGenerateRequest(), now=NOW)
    assert exc_info.value.code == "MAX_PULLUPS_REQUIRED"
    assert await _count(db_session, Generation) == 0


@pytest.mark.asyncio
async def test_successful_generation_creates_planned_ai_session(db_session, user_id):
    result = await _service(db_session).generate(user_id, AiGenerateRequest(max_pullups=10), now=NOW)

    row = result.session
    assert row.status == "planned"
    assert row.sets == [8, 7, 6, 6, 5]
    assert row.total_reps == 32
    assert row.is_ai_generated is True
    assert row.is_modified is False
    assert row.rpe is None
    assert row.ai_comment.startswith("Excellent progress!")
    assert "Total volume: 32 reps." in row.ai_comment

    gen = result.generation
    assert gen.status == "success"
    assert gen.session_id == row.id
    assert gen.prompt_data["mode"] == "new_user"
    assert gen.prompt_data["max_pullups"] == 10
    assert gen.model == "mock-progression-v1"

    quota = await get_quota(db_session, user_id, now=NOW)
    assert quota.remaining == 4


@pytest.mark.asyncio
async def test_start_now_leaves_generated_session_in_progress(db_session, user_id):
    result = await _service(db_session).generate(
        user_id, AiGenerateRequest(max_pullups=3, start_now=True), now=NOW
    )
    assert result.session.status == "in_progress"
    assert result.session.sets == [2, 2, 1, 1, 1]


@pytest.mark.asyncio
async def test_timeout_is_logged_and_not_counted(db_session, user_id):
    service = _service(db_session, generator=_failing(GeneratorTimeout("too slow")))
    with pytest.raises(GenerationTimeoutError) as exc_info:
        await service.generate(user_id, AiGenerateRequest(max_pullups=10), now=NOW)
    assert exc_info.value.status_code == 504
    assert exc_info.value.code == "AI_TIMEOUT"

    gen = (await db_session.execute(select(Generation))).scalar_one()
    assert gen.status == "timeout"
    assert gen.session_id is None
    assert exc_info.value.details["generation_id"] == gen.id
    log = (await db_session.execute(select(GenerationErrorLog))).scalar_one()
    assert log.generation_id == gen.id
    assert log.error_type == "GeneratorTimeout"

    assert await _count(db_session, TrainingSession) == 0
    assert (await get_quota(db_session, user_id, now=NOW)).remaining == 5


@pytest.mark.asyncio
async def test_provider_error_is_logged_as_error(db_session, user_id):
    service = _service(db_session, generator=_failing(RuntimeError("503 Service Unavailable")))
    with pytest.raises(GenerationFailedError) as exc_info:
        await service.generate(user_id, AiGenerateRequest(max_pullups=10), now=NOW)
    assert exc_info.value.status_code == 502
    assert exc_info.value.code == "AI_NETWORK_ERROR"
    gen = (await db_session.execute(select(Generation))).scalar_one()
    assert gen.status == "error"


@pytest.mark.asyncio
async def test_malformed_plan_is_rejected(db_session, user_id):
    generator = AsyncMock()
    generator.generate.return_value = GeneratedPlan(sets=[5, 5, 5], comment="short plan")
    with pytest.raises(GenerationFailedError) as exc_info:
        await _service(db_session, generator=generator).generate(
            user_id, AiGenerateRequest(max_pullups=10), now=NOW
        )
    assert not isinstance(exc_info.value, GenerationTimeoutError)
    assert await _count(db_session, TrainingSession) == 0


@pytest.mark.asyncio
async def test_active_session_blocks_before_generator_is_called(db_session, user_id):
    await SessionLifecycle(db_session).create(
        user_id, SessionCreate(session_date=NOW + timedelta(days=1), sets=[5, 5, 5, 5, 5]), now=NOW
    )
    generator = AsyncMock()
    with pytest.raises(ActiveSessionConflictError):
        await _service(db_session, generator=generator).generate(
            user_id, AiGenerateRequest(max_pullups=10), now=NOW
        )
    generator.generate.assert_not_awaited()
    assert await _count(db_session, Generation) == 0


@pytest.mark.asyncio
async def test_disabled_feature_rejects_generation(db_session, user_id):
    generator = AsyncMock()
    with pytest.raises(FeatureDisabledError) as exc_info:
        await _service(db_session, generator=generator, enabled=False).generate(
            user_id, AiGenerateRequest(max_pullups=10), now=NOW
        )
    assert exc_info.value.status_code == 403
    generator.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_quota_exhausted(db_session, user_id):
    for i in range(5):
        db_session.add(
            Generation(
                user_id=user_id,
                model="mock-progression-v1",
                status="success",
                created_at=NOW - timedelta(hours=22) + timedelta(minutes=i),
            )
        )
    await db_session.commit()

    with pytest.raises(QuotaExceededError) as exc_info:
        await _service(db_session).generate(user_id, AiGenerateRequest(max_pullups=10), now=NOW)
    assert exc_info.value.code == "AI_LIMIT_REACHED"
    assert exc_info.value.message == "AI session limit reached (5/5). Resets in 2 hours."


@pytest.mark.asyncio
async def test_existing_user_plan_derives_from_history(db_session, user_id):
    await SessionLifecycle(db_session).create(
        user_id,
        SessionCreate(
            session_date=NOW - timedelta(days=2), sets=[12, 10, 9, 8, 7], status="completed", rpe=8
        ),
        now=NOW,
    )
    result = await _service(db_session).generate(user_id, AiGenerateRequest(), now=NOW)
    assert result.generation.prompt_data["mode"] == "existing_user"
    assert result.generation.prompt_data["max_pullups"] == 12
    assert result.session.sets == [9, 8, 7, 7, 6]


def test_estimate_max_pullups_without_history():
    assert estimate_max_pullups([]) == 1


@pytest.mark.asyncio
async def test_retry_reuses_original_max_pullups(db_session, user_id):
    service = _service(db_session, generator=_failing(GeneratorError("bad json")))
    with pytest.raises(GenerationFailedError) as exc_info:
        await service.generate(user_id, AiGenerateRequest(max_pullups=10), now=NOW)
    failed_id = exc_info.value.details["generation_id"]

    result = await _service(db_session).retry(user_id, failed_id, now=NOW)
    assert result.session.sets == [8, 7, 6, 6, 5]
    assert result.generation.prompt_data["retry_of"] == failed_id

    with pytest.raises(GenerationAlreadySucceededError) as exc_info:
        await _service(db_session).retry(user_id, result.generation.id, now=NOW)
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_retry_unknown_generation(db_session, user_id):
    with pytest.raises(NotFoundError) as exc_info:
        await _service(db_session).retry(user_id, "missing", now=NOW)
    assert exc_info.value.code == "GENERATION_NOT_FOUND"


@pytest.mark.asyncio
async def test_history_lists_attempts_newest_first(db_session, user_id):
    failing = _service(db_session, generator=_failing(GeneratorTimeout("slow")))
    with pytest.raises(GenerationTimeoutError):
        await failing.generate(user_id, AiGenerateRequest(max_pullups=8), now=NOW - timedelta(hours=1))
    await _service(db_session).generate(user_id, AiGenerateRequest(max_pullups=8), now=NOW)

    rows, total = await _service(db_session).history(user_id)
    assert total == 2
    assert [g.status for g in rows] == ["success", "timeout"]

    rows, total = await _service(db_session).history(user_id, statuses=["timeout"])
    assert total == 1


@pytest.mark.asyncio
async def test_start_now_goes_through_the_lifecycle_start_step(db_session, user_id, caplog):
    with caplog.at_level(logging.INFO, logger="pullup_trainer.services.lifecycle"):
        result = await _service(db_session).generate(
            user_id, AiGenerateRequest(max_pullups=10, start_now=True), now=NOW
        )

    assert result.session.status == "in_progress"
    assert result.session.version == 2
    assert f"Session {result.session.id} started for user {user_id}" in caplog.text

    r = await db_session.execute(select(Event).where(Event.user_id == user_id).order_by(Event.id))
    events = list(r.scalars().all())
    assert [e.event_type for e in events] == ["session_created", "session_started"]
    assert events[1].event_data == {"session_id": result.session.id, "generation_id": result.generation.id}
