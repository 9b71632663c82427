"""Database engine and session management (SQLite locally, PostgreSQL in production)."""

from collections.abc import Generator
from typing import TYPE_CHECKING

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from cinecriticas.core.config import settings

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shared with the request threadpool."""
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, echo=echo)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def session_factory_for(app_settings: "Settings") -> sessionmaker:
    """SessionLocal when the URL is the process default, else a factory on a new engine."""
    if app_settings.DATABASE_URL == settings.DATABASE_URL:
        return SessionLocal
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=build_engine(app_settings.DATABASE_URL, echo=app_settings.DEBUG),
    )


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency that yields a DB session from the app's factory and closes it when done."""
    db = request.app.state.db_session_factory()
    try:
        yield db
    finally:
        db.close()


def check_db_connected(db: Session) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
