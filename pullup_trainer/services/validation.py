"""
Hard input rules for session commands. Each check appends (field, message);
the first issue becomes the error message, all issues go into details.
"""

from datetime import datetime, timedelta

from pullup_trainer.config import settings
from pullup_trainer.core.clock import as_utc
from pullup_trainer.core.errors import ValidationFailedError
from pullup_trainer.models.training_session import SET_COUNT, SessionStatus
from pullup_trainer.schemas.session import SessionCreate, SessionUpdate

MIN_REPS = 1
MAX_REPS = 60
MIN_RPE = 1
MAX_RPE = 10

Issues = list[tuple[str, str]]


def _raise_if_any(issues: Issues) -> None:
    if issues:
        raise ValidationFailedError.from_issues(issues)


def has_positive_set(sets: list[int | None]) -> bool:
    return any(v is not None and v > 0 for v in sets)


def _check_future_limit(session_date: datetime, now: datetime, issues: Issues) -> None:
    if as_utc(session_date) > now + timedelta(days=settings.max_future_days):
        issues.append(
            ("session_date", f"session_date cannot be more than {settings.max_future_days} days in the future")
        )


def _check_set_shape(sets: list[int | None], issues: Issues) -> None:
    if len(sets) != SET_COUNT:
        issues.append(("sets", f"Exactly {SET_COUNT} sets are required"))
        return
    for i, value in enumerate(sets):
        if value is not None and not (MIN_REPS <= value <= MAX_REPS):
            issues.append((f"sets.{i}", f"Each set must be empty or between {MIN_REPS} and {MAX_REPS} reps"))


def _check_rpe_range(rpe: int | None, issues: Issues) -> None:
    if rpe is not None and not (MIN_RPE <= rpe <= MAX_RPE):
        issues.append(("rpe", f"rpe must be between {MIN_RPE} and {MAX_RPE}"))


def _check_notes(notes: str | None, issues: Issues) -> None:
    if notes is not None and len(notes) > settings.notes_max_length:
        issues.append(("notes", f"notes cannot exceed {settings.notes_max_length} characters"))


def validate_create(command: SessionCreate, *, now: datetime) -> None:
    """Raise ValidationFailedError if the create command breaks a hard rule."""
    issues: Issues = []
    status = command.effective_status
    session_date = as_utc(command.session_date)

    _check_future_limit(session_date, now, issues)
    if session_date.date() < now.date() and status not in (SessionStatus.completed.value, SessionStatus.failed.value):
        issues.append(("status", "Historical sessions must use status completed or failed"))
    if command.start_now and command.status not in (None, SessionStatus.planned.value):
        issues.append(("start_now", "start_now cannot be combined with an explicit status"))

    if status == SessionStatus.completed.value:
        if not has_positive_set(command.sets):
            issues.append(("sets", "At least one set must be greater than 0 when status is completed"))
        if command.rpe is None:
            issues.append(("rpe", "rpe is required when status is completed"))
    elif status == SessionStatus.failed.value and command.rpe is not None:
        issues.append(("rpe", "rpe cannot be provided when status is failed"))

    _check_set_shape(command.sets, issues)
    _check_rpe_range(command.rpe, issues)
    _check_notes(command.notes, issues)
    _raise_if_any(issues)


def validate_update(patch: SessionUpdate, *, now: datetime) -> None:
    issues: Issues = []
    if patch.session_date is not None:
        _check_future_limit(patch.session_date, now, issues)
    if patch.sets is not None:
        _check_set_shape(patch.sets, issues)
    _check_notes(patch.notes, issues)
    _raise_if_any(issues)


def validate_completion(sets: list[int | None], rpe: int | None) -> None:
    issues: Issues = []
    if not has_positive_set(sets):
        issues.append(("sets", "At least one set must be greater than 0"))
    _check_set_shape(sets, issues)
    _check_rpe_range(rpe, issues)
    if issues:
        code = None if has_positive_set(sets) else "INVALID_SETS"
        raise ValidationFailedError.from_issues(issues, code=code)
