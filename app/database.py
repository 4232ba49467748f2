"""
SQLAlchemy engine, session factory and declarative base.

Every model module imports ``Base`` from here, and routers obtain a
request-scoped session through the ``get_db`` dependency.  SQLite is the
default backend (and the test backend), so the engine enables foreign-key
enforcement on each new SQLite connection to make ``ON DELETE CASCADE``
behave the same way it does on PostgreSQL.
"""

from __future__ import annotations

import logging
from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_engine(url: str) -> Engine:
    connect_args: dict = {}
    if url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool.
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    module = type(dbapi_connection).__module__
    if module.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = _build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind: Engine | None = None) -> None:
    """Create every table registered on ``Base.metadata``.

    Alembic owns the schema in deployed environments; this helper exists for
    local development and the test suite.
    """
    import app.models  # noqa: F401  (populate the mapper registry)

    Base.metadata.create_all(bind=bind or engine)
    logger.debug("init_db: metadata created on %s", (bind or engine).url)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
