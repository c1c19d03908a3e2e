# db.py
from typing import Optional

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from config import get_settings


def build_engine(database_url: Optional[str] = None):
    """
    Create a sync engine for the configured database.

    SQLite URLs get `check_same_thread=False` because FastAPI runs sync
    handlers in a threadpool; in-memory SQLite also shares one connection.
    """
    url = database_url or get_settings().database_url

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)

    return create_engine(url, echo=False, pool_pre_ping=True)


engine = build_engine()


def init_db(target_engine=None) -> None:
    """
    Called on app startup to create tables if they don't exist.
    """
    # Import models here so SQLModel knows about them
    import models  # noqa: F401

    SQLModel.metadata.create_all(target_engine or engine)
