from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.settings import get_settings


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


_settings = get_settings()

engine = create_engine(
    _settings.resolved_db_url(),
    connect_args={"check_same_thread": False} if _settings.resolved_db_url().startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def get_session_factory(request: Request) -> sessionmaker:
    return getattr(request.app.state, "session_factory", None) or SessionLocal


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Main DB dependency.

    The principal resolved by `enforce_security` is copied into `Session.info`,
    where the `do_orm_execute` hook in app/db/filters.py turns it into row
    filters. Handlers therefore query normally and only ever see rows in scope.
    """

    db = get_session_factory(request)()
    try:
        principal = getattr(getattr(request, "state", None), "principal", None)
        if principal is not None:
            db.info["principal"] = principal
        yield db
    finally:
        db.close()
