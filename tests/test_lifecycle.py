"""Tests for the session lifecycle engine against a real store."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select

from pullup_trainer.core.errors import (
    ActiveSessionConflictError,
    ImmutableSessionError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.db.session import async_session_maker
from pullup_trainer.models.event import Event
from pullup_trainer.models.training_session import ACTIVE_STATUSES, TrainingSession
from pullup_trainer.schemas.session import SessionComplete, SessionCreate, SessionUpdate
from pullup_trainer.services.events import EventRecorder
from pullup_trainer.services.lifecycle import SessionLifecycle

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
TOMORROW = NOW + timedelta(days=1)


async def _active_count(user_id: str) -> int:
    async with async_session_maker() as session:
        r = await session.execute(
            select(func.count())
            .select_from(TrainingSession)
            .where(TrainingSession.user_id == user_id, TrainingSession.status.in_(ACTIVE_STATUSES))
        )
        return r.scalar_one()


async def _event_types(user_id: str) -> list[str]:
    async with async_session_maker() as session:
        r = await session.execute(select(Event.event_type).where(Event.user_id == user_id).order_by(Event.id))
        return list(r.scalars().all())


@pytest.mark.asyncio
async def test_create_planned_session_defaults(db_session, user_id):
    result = await SessionLifecycle(db_session).create(
        user_id, SessionCreate(session_date=TOMORROW, sets=[10, 12, 10, 10, 11]), now=NOW
    )
    row = result.session
    assert row.status == "planned"
    assert row.total_reps == 53
    assert row.version == 1
    assert row.is_ai_generated is False
    assert row.rpe is None
    assert result.warnings == []
    assert await _event_types(user_id) == ["session_created"]


@pytest.mark.asyncio
async def test_create_rejects_second_active_session(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    first = await lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[5, 5, 5, 5, 5]), now=NOW)
    with pytest.raises(ActiveSessionConflictError) as exc_info:
        await lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[6, 6, 6, 6, 6]), now=NOW)
    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "ACTIVE_SESSION_CONFLICT"
    assert exc_info.value.details["active_session_id"] == first.session.id
    assert await _active_count(user_id) == 1


@pytest.mark.asyncio
async def test_historical_completed_session_allowed_while_active(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    await lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[5, 5, 5, 5, 5]), now=NOW)
    result = await lifecycle.create(
        user_id,
        SessionCreate(session_date=NOW - timedelta(days=2), sets=[8, 8, 7, None, None], status="completed", rpe=7),
        now=NOW,
    )
    assert result.session.status == "completed"
    assert result.session.rpe == 7
    assert result.session.total_reps == 23
    assert result.session.ended_at == NOW - timedelta(days=2)


@pytest.mark.asyncio
async def test_store_constraint_backs_up_the_pre_check(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    await lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[5, 5, 5, 5, 5]), now=NOW)
    # Simulate a concurrent create that passed the pre-check before the first insert landed
    with patch.object(SessionRepository, "find_active", AsyncMock(return_value=None)):
        with pytest.raises(ActiveSessionConflictError):
            await lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[6, 6, 6, 6, 6]), now=NOW)
    assert await _active_count(user_id) == 1


@pytest.mark.asyncio
async def test_start_now_creates_then_starts_with_two_events(db_session, user_id):
    result = await SessionLifecycle(db_session).create(
        user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5], start_now=True), now=NOW
    )
    assert result.session.status == "in_progress"
    assert result.session.version == 2
    assert await _event_types(user_id) == ["session_created", "session_started"]


@pytest.mark.asyncio
async def test_full_lifecycle_planned_to_completed(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[10, 10, 8, 8, 6]), now=NOW)
    started = await lifecycle.start(user_id, created.session.id, now=NOW)
    assert started.status == "in_progress"

    done_at = NOW + timedelta(minutes=30)
    completed = await lifecycle.complete(
        user_id, created.session.id, SessionComplete(sets=[10, 9, 8, 7, 6], rpe=8), now=done_at
    )
    assert completed.status == "completed"
    assert completed.total_reps == 40
    assert completed.rpe == 8
    assert completed.ended_at == done_at
    assert await _event_types(user_id) == ["session_created", "session_started", "session_completed"]


@pytest.mark.asyncio
async def test_complete_keeps_existing_sets_when_omitted(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[4, 4, 4, None, None]), now=NOW)
    await lifecycle.start(user_id, created.session.id, now=NOW)
    completed = await lifecycle.complete(user_id, created.session.id, SessionComplete(), now=NOW)
    assert completed.sets == [4, 4, 4, None, None]
    assert completed.total_reps == 12


@pytest.mark.asyncio
async def test_complete_with_all_empty_sets_is_rejected(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[None] * 5), now=NOW)
    await lifecycle.start(user_id, created.session.id, now=NOW)
    with pytest.raises(ValidationFailedError) as exc_info:
        await lifecycle.complete(user_id, created.session.id, SessionComplete(), now=NOW)
    assert exc_info.value.code == "INVALID_SETS"
    row = await lifecycle.get(user_id, created.session.id)
    assert row.status == "in_progress"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_before", ["planned", "completed", "failed"])
async def test_complete_only_from_in_progress(db_session, user_id, status_before):
    lifecycle = SessionLifecycle(db_session)
    if status_before == "planned":
        cmd = SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5])
    elif status_before == "completed":
        cmd = SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5], status="completed", rpe=6)
    else:
        cmd = SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5], status="failed")
    created = await lifecycle.create(user_id, cmd, now=NOW)
    version = created.session.version

    with pytest.raises(InvalidStateError) as exc_info:
        await lifecycle.complete(user_id, created.session.id, SessionComplete(rpe=5), now=NOW)
    assert exc_info.value.status_code == 422
    assert exc_info.value.details == {"current_status": status_before, "attempted_action": "complete"}

    async with async_session_maker() as fresh:
        row = await SessionLifecycle(fresh).get(user_id, created.session.id)
        assert row.status == status_before
        assert row.version == version


@pytest.mark.asyncio
async def test_start_on_in_progress_session_is_rejected(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)
    await lifecycle.start(user_id, created.session.id, now=NOW)
    with pytest.raises(InvalidStateError) as exc_info:
        await lifecycle.start(user_id, created.session.id, now=NOW)
    assert exc_info.value.message == "Only planned sessions can be started"
    row = await lifecycle.get(user_id, created.session.id)
    assert row.status == "in_progress"
    assert row.version == 2


@pytest.mark.asyncio
async def test_fail_records_reason_and_keeps_sets(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[7, 7, 7, 7, 7]), now=NOW)
    await lifecycle.start(user_id, created.session.id, now=NOW)
    failed = await lifecycle.fail(user_id, created.session.id, reason="shoulder pain", now=NOW)
    assert failed.status == "failed"
    assert failed.total_reps == 35
    assert failed.rpe is None

    async with async_session_maker() as session:
        r = await session.execute(select(Event).where(Event.event_type == "session_failed"))
        event = r.scalar_one()
    assert event.event_data == {"session_id": created.session.id, "reason": "shoulder pain"}


@pytest.mark.asyncio
async def test_fail_only_from_in_progress(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[7, 7, 7, 7, 7]), now=NOW)
    with pytest.raises(InvalidStateError):
        await lifecycle.fail(user_id, created.session.id, now=NOW)


@pytest.mark.asyncio
async def test_update_recomputes_total_and_marks_ai_sessions_modified(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)
    created.session.is_ai_generated = True
    await db_session.commit()

    updated = await lifecycle.update(
        user_id,
        created.session.id,
        SessionUpdate(sets=[6, 6, 6, 6, None], notes="felt strong"),
        expected_version=created.session.version,
        now=NOW,
    )
    assert updated.total_reps == 24
    assert updated.is_modified is True
    assert updated.notes == "felt strong"


@pytest.mark.asyncio
async def test_update_ai_comment_on_manual_session_is_rejected(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)
    with pytest.raises(ValidationFailedError) as exc_info:
        await lifecycle.update(
            user_id,
            created.session.id,
            SessionUpdate(ai_comment="nice"),
            expected_version=created.session.version,
            now=NOW,
        )
    assert exc_info.value.code == "INVALID_AI_COMMENT"


@pytest.mark.asyncio
async def test_update_of_terminal_session_is_immutable(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(
        user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5], status="completed", rpe=5), now=NOW
    )
    with pytest.raises(ImmutableSessionError) as exc_info:
        await lifecycle.update(
            user_id,
            created.session.id,
            SessionUpdate(sets=[6, 6, 6, 6, 6]),
            expected_version=created.session.version,
            now=NOW,
        )
    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Cannot edit completed or failed sessions"


@pytest.mark.asyncio
async def test_delete_completed_session_is_rejected_and_row_kept(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(
        user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5], status="completed", rpe=5), now=NOW
    )
    with pytest.raises(ImmutableSessionError) as exc_info:
        await lifecycle.delete(user_id, created.session.id)
    assert exc_info.value.message == "Cannot delete completed or failed sessions"

    async with async_session_maker() as fresh:
        row = await SessionLifecycle(fresh).get(user_id, created.session.id)
        assert row.status == "completed"


@pytest.mark.asyncio
async def test_delete_planned_session(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)
    await lifecycle.delete(user_id, created.session.id)
    with pytest.raises(NotFoundError):
        await lifecycle.get(user_id, created.session.id)
    assert await _event_types(user_id) == ["session_created", "session_deleted"]


@pytest.mark.asyncio
async def test_sessions_are_scoped_to_their_owner(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)
    created = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)
    with pytest.raises(NotFoundError) as exc_info:
        await lifecycle.get("someone-else", created.session.id)
    assert exc_info.value.status_code == 404
    with pytest.raises(NotFoundError):
        await lifecycle.delete("someone-else", created.session.id)


@pytest.mark.asyncio
async def test_event_recorder_failure_does_not_fail_the_mutation(db_session, user_id):
    broken = EventRecorder(session_factory=MagicMock(side_effect=RuntimeError("events store down")))
    lifecycle = SessionLifecycle(db_session, recorder=broken)
    result = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5, 5, 5, 5, 5]), now=NOW)

    async with async_session_maker() as fresh:
        row = await SessionLifecycle(fresh).get(user_id, result.session.id)
        assert row.status == "planned"
    assert await _event_types(user_id) == []


@pytest.mark.asyncio
async def test_single_active_invariant_across_operation_sequence(db_session, user_id):
    lifecycle = SessionLifecycle(db_session)

    async def attempt(coro):
        try:
            return await coro
        except (ActiveSessionConflictError, InvalidStateError, ImmutableSessionError):
            return None

    first = await lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5] * 5), now=NOW)
    steps = [
        lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[5] * 5), now=NOW),
        lifecycle.start(user_id, first.session.id, now=NOW),
        lifecycle.create(user_id, SessionCreate(session_date=NOW, sets=[5] * 5, start_now=True), now=NOW),
        lifecycle.create(
            user_id, SessionCreate(session_date=NOW, sets=[5] * 5, status="failed"), now=NOW
        ),
        lifecycle.complete(user_id, first.session.id, SessionComplete(rpe=6), now=NOW),
        lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[6] * 5, start_now=True), now=NOW),
        lifecycle.create(user_id, SessionCreate(session_date=TOMORROW, sets=[6] * 5), now=NOW),
    ]
    for step in steps:
        await attempt(step)
        assert await _active_count(user_id) <= 1
