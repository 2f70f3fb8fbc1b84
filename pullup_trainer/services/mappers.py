"""Projections of stored rows into API payloads. One canonical view per entity, plus the detail view."""

from pullup_trainer.core.clock import isoformat
from pullup_trainer.models.event import Event
from pullup_trainer.models.generation import Generation
from pullup_trainer.models.training_session import SessionStatus, TrainingSession
from pullup_trainer.schemas.session import SessionWarning

_ACTIONS: dict[str, list[str]] = {
    SessionStatus.planned.value: ["start", "edit", "delete"],
    SessionStatus.in_progress.value: ["complete", "fail", "edit", "delete"],
    SessionStatus.completed.value: [],
    SessionStatus.failed.value: [],
}


def allowed_actions(status: str) -> list[str]:
    return list(_ACTIONS.get(status, []))


def etag_for(row: TrainingSession) -> str:
    return f'"{row.version}"'


def session_to_dict(row: TrainingSession) -> dict:
    return {
        "id": row.id,
        "status": row.status,
        "session_date": isoformat(row.session_date),
        "sets": row.sets,
        "total_reps": row.total_reps,
        "rpe": row.rpe,
        "notes": row.notes,
        "ai_comment": row.ai_comment,
        "is_ai_generated": row.is_ai_generated,
        "is_modified": row.is_modified,
        "version": row.version,
        "ended_at": isoformat(row.ended_at),
        "created_at": isoformat(row.created_at),
        "updated_at": isoformat(row.updated_at),
    }


def session_to_detail(row: TrainingSession) -> dict:
    actions = allowed_actions(row.status)
    data = session_to_dict(row)
    data["can_edit"] = "edit" in actions
    data["can_delete"] = "delete" in actions
    data["actions"] = actions
    return data


def warnings_to_list(warnings: list[SessionWarning]) -> list[dict]:
    return [w.model_dump(mode="json") for w in warnings]


def generation_to_dict(gen: Generation, *, include_session: bool = True) -> dict:
    data = {
        "id": gen.id,
        "model": gen.model,
        "status": gen.status,
        "duration_ms": gen.duration_ms,
        "session_id": gen.session_id,
        "created_at": isoformat(gen.created_at),
    }
    if include_session:
        data["session"] = session_to_dict(gen.session) if gen.session is not None else None
    return data


def event_to_dict(event: Event) -> dict:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "event_data": event.event_data,
        "created_at": isoformat(event.created_at),
    }
