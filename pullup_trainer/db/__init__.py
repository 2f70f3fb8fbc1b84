from pullup_trainer.db.session import async_session_maker, close_db, get_db, init_db
from pullup_trainer.db.base import Base

__all__ = ["Base", "async_session_maker", "close_db", "get_db", "init_db"]
