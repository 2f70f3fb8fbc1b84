"""
Domain errors. Every error carries an HTTP status, a machine-readable code and
structured details; main.py renders them as {"error": {"code", "message", "details"}}.
"""

from __future__ import annotations

from typing import Any


class PullupTrainerError(Exception):
    """Base exception for the pull-up trainer service."""

    status_code: int = 500
    kind: str = "internal"
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(PullupTrainerError):
    status_code = 404
    kind = "not_found"
    default_code = "SESSION_NOT_FOUND"


class InvalidStateError(PullupTrainerError):
    """Transition attempted from a status that does not allow it."""

    status_code = 422
    kind = "invalid_state"
    default_code = "INVALID_SESSION_STATUS"

    def __init__(self, message: str, *, current_status: str, attempted_action: str):
        super().__init__(
            message,
            details={"current_status": current_status, "attempted_action": attempted_action},
        )


class ConflictError(PullupTrainerError):
    status_code = 409
    kind = "conflict"
    default_code = "CONFLICT"


class ActiveSessionConflictError(ConflictError):
    kind = "active_session_conflict"
    default_code = "ACTIVE_SESSION_CONFLICT"

    def __init__(self, message: str = "You already have an active session", *, details: dict[str, Any] | None = None):
        super().__init__(message, details=details)


class OptimisticLockError(ConflictError):
    kind = "optimistic_lock"
    default_code = "OPTIMISTIC_LOCK_FAILURE"

    def __init__(self, *, current: int | None = None, provided: int | None = None):
        super().__init__(
            "Session has been modified by another request. Please refresh and try again.",
            details={"current": current, "provided": provided},
        )


class GenerationAlreadySucceededError(ConflictError):
    default_code = "GENERATION_ALREADY_SUCCEEDED"


class ValidationFailedError(PullupTrainerError):
    """Malformed input. details maps field name to a list of messages."""

    status_code = 400
    kind = "validation"
    default_code = "VALIDATION_ERROR"

    @classmethod
    def from_issues(cls, issues: list[tuple[str, str]], *, code: str | None = None) -> "ValidationFailedError":
        details: dict[str, list[str]] = {}
        for field, message in issues:
            details.setdefault(field, []).append(message)
        return cls(issues[0][1], code=code, details=details)


class ImmutableSessionError(PullupTrainerError):
    status_code = 403
    kind = "immutable"
    default_code = "SESSION_IMMUTABLE"


class QuotaExceededError(PullupTrainerError):
    status_code = 403
    kind = "quota_exceeded"
    default_code = "AI_LIMIT_REACHED"


class FeatureDisabledError(PullupTrainerError):
    status_code = 403
    kind = "feature_disabled"
    default_code = "FEATURE_DISABLED"

    def __init__(self, feature: str):
        super().__init__(f"Feature '{feature}' is disabled", details={"feature": feature})


class PreconditionRequiredError(PullupTrainerError):
    status_code = 428
    kind = "precondition_required"
    default_code = "PRECONDITION_REQUIRED"


class InfrastructureError(PullupTrainerError):
    """Store or collaborator unreachable. Never retried here; the caller decides."""

    status_code = 500
    kind = "infrastructure"
    default_code = "INFRASTRUCTURE_ERROR"


class GenerationFailedError(PullupTrainerError):
    status_code = 502
    kind = "generation_failed"
    default_code = "AI_NETWORK_ERROR"


class GenerationTimeoutError(GenerationFailedError):
    status_code = 504
    default_code = "AI_TIMEOUT"
