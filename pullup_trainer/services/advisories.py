"""
Predicates shared by session creation and the preflight check: the active-session
guard and the non-blocking REST_PERIOD / MULTIPLE_SAME_DAY advisories.

Same-day uses UTC calendar boundaries; rest period uses a rolling 24h window
ending at the target session date.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from pullup_trainer.core.clock import as_utc, utc_day_bounds
from pullup_trainer.db.repositories.sessions import SessionRepository
from pullup_trainer.models.training_session import ACTIVE_STATUSES, TrainingSession
from pullup_trainer.schemas.session import SessionWarning, WarningType

REST_PERIOD_HOURS = 24


def conflicts_with_active(active: TrainingSession | None, *, status: str, start_now: bool = False) -> bool:
    """True if a new session with this status would become a second active session."""
    return active is not None and (start_now or status in ACTIVE_STATUSES)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (as_utc(later) - as_utc(earlier)).total_seconds() / 3600


def rest_period_warning(last_ended_at: datetime | None, target: datetime) -> SessionWarning | None:
    if last_ended_at is None:
        return None
    hours = hours_between(last_ended_at, target)
    if 0 <= hours < REST_PERIOD_HOURS:
        return SessionWarning(type=WarningType.rest_period, message=f"Last session ended {hours:.1f} hours ago")
    return None


def same_day_warning(same_day_count: int, target: datetime) -> SessionWarning | None:
    if same_day_count > 0:
        return SessionWarning(
            type=WarningType.multiple_same_day,
            message=f"You already have a session on {as_utc(target).date().isoformat()}",
        )
    return None


def active_session_warning(active: TrainingSession) -> SessionWarning:
    return SessionWarning(
        type=WarningType.active_session_exists,
        message=f"You already have an active session ({active.status})",
    )


@dataclass
class Advisories:
    warnings: list[SessionWarning] = field(default_factory=list)
    rest_info: dict | None = None


async def compute_advisories(
    repo: SessionRepository,
    user_id: str,
    target: datetime,
    *,
    include_rest: bool = True,
) -> Advisories:
    """REST_PERIOD (unless suppressed) then MULTIPLE_SAME_DAY for a session planned at target."""
    target = as_utc(target)
    result = Advisories()
    if include_rest:
        last = await repo.find_recent_terminal_within(
            user_id, target - timedelta(hours=REST_PERIOD_HOURS), target
        )
        if last is not None:
            warning = rest_period_warning(last.ended_at, target)
            result.rest_info = {
                "last_session_id": last.id,
                "hours_since": round(hours_between(last.ended_at, target), 1),
            }
            if warning:
                result.warnings.append(warning)

    day_start, day_end = utc_day_bounds(target)
    same_day = await repo.count_same_day(user_id, day_start, day_end)
    warning = same_day_warning(same_day, target)
    if warning:
        result.warnings.append(warning)
    return result
