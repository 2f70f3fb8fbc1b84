import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from pullup_trainer.core.clock import utcnow
from pullup_trainer.db.base import Base

SET_COUNT = 5


class SessionStatus(str, enum.Enum):
    planned = "planned"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


ACTIVE_STATUSES = (SessionStatus.planned.value, SessionStatus.in_progress.value)
TERMINAL_STATUSES = (SessionStatus.completed.value, SessionStatus.failed.value)

_ACTIVE_PREDICATE = text("status IN ('planned', 'in_progress')")


class TrainingSession(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        # One planned/in_progress row per user; the store is the source of truth for this rule.
        Index(
            "uq_sessions_user_active",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
        Index("ix_sessions_user_date", "user_id", "session_date"),
        CheckConstraint("status IN ('planned', 'in_progress', 'completed', 'failed')", name="ck_sessions_status"),
        CheckConstraint("rpe IS NULL OR (rpe BETWEEN 1 AND 10)", name="ck_sessions_rpe"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SessionStatus.planned.value)
    session_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    set_1: Mapped[int | None] = mapped_column(Integer, nullable=True)
    set_2: Mapped[int | None] = mapped_column(Integer, nullable=True)
    set_3: Mapped[int | None] = mapped_column(Integer, nullable=True)
    set_4: Mapped[int | None] = mapped_column(Integer, nullable=True)
    set_5: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_reps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rpe: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # UPDATE/DELETE statements carry "WHERE version = :expected"; a miss raises StaleDataError.
    __mapper_args__ = {"version_id_col": version}

    @property
    def sets(self) -> list[int | None]:
        return [self.set_1, self.set_2, self.set_3, self.set_4, self.set_5]

    @sets.setter
    def sets(self, values: list[int | None]) -> None:
        self.set_1, self.set_2, self.set_3, self.set_4, self.set_5 = values
        self.total_reps = sum(v for v in values if v is not None)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
