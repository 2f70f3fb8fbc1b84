"""Shared store error translation for repositories."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.core.errors import InfrastructureError

logger = logging.getLogger(__name__)


class BaseRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, stmt):
        try:
            return await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Store read failed (%s): %s", type(self).__name__, e)
            raise InfrastructureError("Failed to read from the session store", details={"hint": str(e)}) from e

    async def _scalar(self, stmt):
        r = await self._execute(stmt)
        return r.scalar_one_or_none()
