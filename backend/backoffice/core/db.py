# backend/backoffice/core/db.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from backoffice.core.config import settings


class Base(DeclarativeBase):
    pass


def engine_options(database_url: str) -> dict:
    """Timestamps are written and compared in UTC whatever the server default is."""
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        # request handlers run in the threadpool, not on the thread that opened the connection
        return {"connect_args": {"check_same_thread": False}}
    if backend == "postgresql":
        return {"pool_pre_ping": True, "connect_args": {"options": "-c timezone=utc"}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **engine_options(settings.database_url))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    """FastAPI dependency: one session per request, closed (and rolled back if unfinished) afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# guarded writes and relationships resolve against every mapped table
import backoffice.models  # noqa: F401
