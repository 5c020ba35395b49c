"""Database configuration for the recurring task service."""
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from recurring_tasks.config import DATABASE_URL, SQL_ECHO


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine, enabling SQLite foreign keys where needed."""
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    kwargs.setdefault("echo", SQL_ECHO)
    if not is_sqlite:
        kwargs.setdefault("pool_pre_ping", True)

    engine = create_engine(database_url, connect_args=connect_args, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(DATABASE_URL)


def get_session() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    with Session(engine) as session:
        yield session
