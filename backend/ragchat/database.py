"""
Database configuration and session management.

The engine and its connection pool are owned by a ``Database`` object that the
application factory constructs at startup and disposes at shutdown.
"""

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ragchat.config import Settings

# Base class for declarative models
Base = declarative_base()


def _configure_sqlite(engine: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN so SAVEPOINTs (insert-or-ignore) behave, and
    enforce foreign keys for the cascade rules.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Owns the engine, the pool and the session factory."""

    def __init__(self, url: str, echo: bool = False, engine: Optional[Engine] = None):
        self.url = url
        self.engine = engine or self._create_engine(url, echo)
        # Objects stay readable after commit without opening a new transaction
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        connect_args = {}
        kwargs = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            path = url.replace("sqlite:///", "")
            if path == ":memory:" or url == "sqlite://":
                kwargs["poolclass"] = StaticPool
            else:
                # Create database directory if it doesn't exist
                db_dir = os.path.dirname(path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
        engine = create_engine(url, echo=echo, connect_args=connect_args, **kwargs)
        if url.startswith("sqlite"):
            _configure_sqlite(engine)
        return engine

    def create_all(self) -> None:
        """Create all tables."""
        # Import models to ensure they're registered
        from ragchat import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        from ragchat import models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager for database session.
        Use for non-FastAPI contexts.
        """
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency for getting database session.
    Use in FastAPI route dependencies.
    """
    database: Database = request.app.state.database
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
