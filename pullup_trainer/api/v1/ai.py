"""AI session generation API: generate, quota, history, retry."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.api.deps import get_current_user_id, get_generation_service
from pullup_trainer.db.session import get_db
from pullup_trainer.models.generation import GenerationStatus
from pullup_trainer.schemas.generation import AiGenerateRequest, AiQuota
from pullup_trainer.schemas.pagination import PaginatedResponse
from pullup_trainer.services.generation import GenerationResult, GenerationService
from pullup_trainer.services.mappers import etag_for, generation_to_dict, session_to_detail
from pullup_trainer.services.quota import get_quota

router = APIRouter(prefix="/sessions/ai", tags=["ai"])


def _result_to_response(result: GenerationResult) -> dict:
    return {
        "session": session_to_detail(result.session),
        "generation": generation_to_dict(result.generation, include_session=False),
    }


@router.post(
    "",
    status_code=201,
    summary="Generate a session with AI",
    responses={
        400: {"description": "max_pullups required for new users"},
        401: {"description": "Not authenticated"},
        403: {"description": "AI quota reached or feature disabled"},
        409: {"description": "Another session is already active"},
        502: {"description": "AI provider failed"},
        504: {"description": "AI provider timed out"},
    },
)
async def generate_session(
    body: AiGenerateRequest,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[GenerationService, Depends(get_generation_service)],
) -> dict:
    result = await service.generate(user_id, body)
    response.headers["ETag"] = etag_for(result.session)
    return _result_to_response(result)


@router.get("/quota", response_model=AiQuota, summary="AI generation quota (rolling 24h)")
async def read_quota(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> AiQuota:
    return await get_quota(session, user_id)


@router.get("/history", response_model=PaginatedResponse, summary="AI generation attempts, newest first")
async def list_generations(
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[GenerationService, Depends(get_generation_service)],
    status: Annotated[list[GenerationStatus] | None, Query()] = None,
    limit: int = Query(default=10, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    rows, total = await service.history(
        user_id, statuses=[s.value for s in status] if status else None, limit=limit, offset=offset
    )
    return PaginatedResponse.build([generation_to_dict(g) for g in rows], total, limit, offset)


@router.post(
    "/{generation_id}/retry",
    status_code=201,
    summary="Retry a failed AI generation",
    responses={404: {"description": "Generation not found"}, 409: {"description": "Generation already succeeded"}},
)
async def retry_generation(
    generation_id: str,
    response: Response,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[GenerationService, Depends(get_generation_service)],
) -> dict:
    result = await service.retry(user_id, generation_id)
    response.headers["ETag"] = etag_for(result.session)
    return _result_to_response(result)
