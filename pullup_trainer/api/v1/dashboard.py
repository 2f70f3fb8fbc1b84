from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.api.deps import get_current_user_id
from pullup_trainer.db.session import get_db
from pullup_trainer.schemas.dashboard import DashboardSnapshot
from pullup_trainer.services.dashboard import get_dashboard

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardSnapshot, summary="Dashboard snapshot")
async def read_dashboard(
    session: Annotated[AsyncSession, Depends(get_db)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> DashboardSnapshot:
    return await get_dashboard(session, user_id)
