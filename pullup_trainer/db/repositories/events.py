from sqlalchemy import func, select

from pullup_trainer.db.repositories.base import BaseRepository
from pullup_trainer.models.event import Event


class EventRepository(BaseRepository):
    async def append(self, user_id: str, event_type: str, payload: dict | None = None) -> Event:
        event = Event(user_id=user_id, event_type=event_type, event_data=payload)
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_user(
        self,
        user_id: str,
        *,
        event_types: list[str] | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[Event], int]:
        conditions = [Event.user_id == user_id]
        if event_types:
            conditions.append(Event.event_type.in_(event_types))
        count_r = await self._execute(select(func.count()).select_from(Event).where(*conditions))
        total = count_r.scalar_one()
        r = await self._execute(
            select(Event).where(*conditions).order_by(Event.created_at.desc(), Event.id.desc()).limit(limit).offset(offset)
        )
        return list(r.scalars().all()), total
