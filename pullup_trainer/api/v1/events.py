"""Events API: read-only audit trail of the caller's session transitions."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.api.deps import get_current_user_id
from pullup_trainer.db.repositories.events import EventRepository
from pullup_trainer.db.session import get_db
from pullup_trainer.schemas.pagination import PaginatedResponse
from pullup_trainer.services.events import EventType
from pullup_trainer.services.mappers import event_to_dict

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=PaginatedResponse, summary="List events, newest first")
async def list_events(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    event_type: Annotated[list[EventType] | None, Query()] = None,
    limit: int = Query(default=10, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    rows, total = await EventRepository(session).list_for_user(
        user_id,
        event_types=[t.value for t in event_type] if event_type else None,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse.build([event_to_dict(e) for e in rows], total, limit, offset)
