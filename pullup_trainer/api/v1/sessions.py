"""Sessions API: create, list, preflight, detail, edit, delete and lifecycle transitions."""

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.api.deps import get_current_user_id, get_session_lifecycle, require_if_match
from pullup_trainer.db.session import get_db
from pullup_trainer.models.training_session import SessionStatus
from pullup_trainer.schemas.pagination import PaginatedResponse
from pullup_trainer.schemas.session import (
    PreflightResult,
    SessionComplete,
    SessionCreate,
    SessionFail,
    SessionUpdate,
)
from pullup_trainer.services.lifecycle import SessionLifecycle
from pullup_trainer.services.mappers import etag_for, session_to_detail, session_to_dict, warnings_to_list
from pullup_trainer.services.preflight import run_preflight

router = APIRouter(prefix="/sessions", tags=["sessions"])

_ERRORS = {401: {"description": "Not authenticated"}, 404: {"description": "Session not found"}}


@router.post(
    "",
    status_code=201,
    summary="Create session",
    responses={
        400: {"description": "Validation error"},
        401: {"description": "Not authenticated"},
        409: {"description": "Another session is already active"},
    },
)
async def create_session(
    body: SessionCreate,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
) -> dict:
    """Create a session. Warnings (rest period, same day) never block creation."""
    result = await lifecycle.create(user_id, body)
    response.headers["ETag"] = etag_for(result.session)
    return {"session": session_to_detail(result.session), "warnings": warnings_to_list(result.warnings)}


@router.get("", response_model=PaginatedResponse, summary="List sessions", responses={401: _ERRORS[401]})
async def list_sessions(
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
    status: Annotated[list[SessionStatus] | None, Query()] = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    sort: Literal["asc", "desc"] = "desc",
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    rows, total = await lifecycle.list_sessions(
        user_id,
        statuses=[s.value for s in status] if status else None,
        date_from=date_from,
        date_to=date_to,
        ascending=sort == "asc",
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse.build([session_to_dict(r) for r in rows], total, limit, offset)


@router.get(
    "/validation",
    response_model=PreflightResult,
    summary="Preflight check before creating a session",
    responses={401: _ERRORS[401]},
)
async def validate_session(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    session_date: datetime,
    status: SessionStatus = SessionStatus.planned,
    ignore_rest_warning: bool = False,
) -> PreflightResult:
    return await run_preflight(
        session,
        user_id,
        session_date=session_date,
        status=status.value,
        ignore_rest_warning=ignore_rest_warning,
    )


@router.get("/{session_id}", summary="Get session", responses=_ERRORS)
async def get_session(
    session_id: str,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
) -> dict:
    row = await lifecycle.get(user_id, session_id)
    response.headers["ETag"] = etag_for(row)
    return session_to_detail(row)


@router.patch(
    "/{session_id}",
    summary="Edit a planned or in-progress session",
    responses={
        **_ERRORS,
        403: {"description": "Session is completed or failed"},
        409: {"description": "Session was modified by another request"},
        428: {"description": "If-Match header missing"},
    },
)
async def update_session(
    session_id: str,
    body: SessionUpdate,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    expected_version: Annotated[int, Depends(require_if_match)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
) -> dict:
    row = await lifecycle.update(user_id, session_id, body, expected_version=expected_version)
    response.headers["ETag"] = etag_for(row)
    return session_to_detail(row)


@router.delete(
    "/{session_id}",
    status_code=204,
    summary="Delete a planned or in-progress session",
    responses={**_ERRORS, 403: {"description": "Session is completed or failed"}},
)
async def delete_session(
    session_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
) -> Response:
    await lifecycle.delete(user_id, session_id)
    return Response(status_code=204)


@router.post(
    "/{session_id}/start",
    summary="Start a planned session",
    responses={**_ERRORS, 422: {"description": "Session is not planned"}},
)
async def start_session(
    session_id: str,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
) -> dict:
    row = await lifecycle.start(user_id, session_id)
    response.headers["ETag"] = etag_for(row)
    return session_to_detail(row)


@router.post(
    "/{session_id}/complete",
    summary="Complete an in-progress session",
    responses={**_ERRORS, 400: {"description": "Invalid sets or RPE"}, 422: {"description": "Session is not in progress"}},
)
async def complete_session(
    session_id: str,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
    body: SessionComplete | None = None,
) -> dict:
    row = await lifecycle.complete(user_id, session_id, body or SessionComplete())
    response.headers["ETag"] = etag_for(row)
    return session_to_detail(row)


@router.post(
    "/{session_id}/fail",
    summary="Mark an in-progress session as failed",
    responses={**_ERRORS, 422: {"description": "Session is not in progress"}},
)
async def fail_session(
    session_id: str,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    lifecycle: Annotated[SessionLifecycle, Depends(get_session_lifecycle)],
    body: SessionFail | None = None,
) -> dict:
    row = await lifecycle.fail(user_id, session_id, reason=body.reason if body else None)
    response.headers["ETag"] = etag_for(row)
    return session_to_detail(row)
