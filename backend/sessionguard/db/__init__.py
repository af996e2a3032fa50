from sessionguard.db.session import async_session_maker, build_engine, engine, init_db
from sessionguard.db.base import Base

__all__ = ["Base", "async_session_maker", "build_engine", "engine", "init_db"]
