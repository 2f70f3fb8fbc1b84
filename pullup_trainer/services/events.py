"""Best-effort audit trail. Recording failures are logged and never reach the caller."""

import enum
import logging
from typing import Any

from pullup_trainer.db.repositories.events import EventRepository
from pullup_trainer.db.session import async_session_maker

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    session_created = "session_created"
    session_started = "session_started"
    session_completed = "session_completed"
    session_failed = "session_failed"
    session_updated = "session_updated"
    session_deleted = "session_deleted"


class EventRecorder:
    """
    Appends events in a store session of its own, after the mutation has committed,
    so a failed append can never roll back the session change it describes.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_session_maker

    async def record(self, user_id: str, event_type: EventType | str, payload: dict[str, Any] | None = None) -> bool:
        name = event_type.value if isinstance(event_type, EventType) else event_type
        try:
            async with self._session_factory() as session:
                await EventRepository(session).append(user_id, name, payload)
                await session.commit()
        except Exception as e:
            logger.warning("Failed to record %s event for user %s: %s", name, user_id, e)
            return False
        return True
