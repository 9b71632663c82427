"""Server-side session records keyed by an opaque random id (the sid cookie value)."""

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cinecriticas.models import WebSession
from cinecriticas.services.user_store import StoreUnavailableError

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings

logger = logging.getLogger(__name__)

# 32 random bytes, url-safe: ~43 characters.
SESSION_ID_BYTES = 32


@dataclass
class SessionRecord:
    """A session row. expires_at is absolute: saving never extends it."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at

    @property
    def max_age_seconds(self) -> int:
        """Seconds left, for the cookie Max-Age."""
        return max(0, int((self.expires_at - datetime.now(UTC)).total_seconds()))


class SessionStore(Protocol):
    def create(self, data: dict[str, Any], max_age: timedelta) -> SessionRecord: ...

    def get(self, session_id: str) -> SessionRecord | None: ...

    def save(self, record: SessionRecord) -> None: ...

    def destroy(self, session_id: str) -> None: ...


def _new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class InMemorySessionStore:
    """Process-local sessions; lost on restart and not shared between workers."""

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, data: dict[str, Any], max_age: timedelta) -> SessionRecord:
        record = SessionRecord(
            id=_new_session_id(),
            data=dict(data),
            expires_at=datetime.now(UTC) + max_age,
        )
        with self._lock:
            # Expired records go here as well as on get(); nothing else visits them
            self._sweep(datetime.now(UTC))
            self._records[record.id] = record
        return SessionRecord(record.id, dict(record.data), record.expires_at)

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            if record.is_expired():
                del self._records[session_id]
                return None
            # Callers get a copy; changes only land through save()
            return SessionRecord(record.id, dict(record.data), record.expires_at)

    def save(self, record: SessionRecord) -> None:
        with self._lock:
            existing = self._records.get(record.id)
            if existing is None:
                return
            existing.data = dict(record.data)

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)

    def _sweep(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [sid for sid, r in self._records.items() if r.is_expired(now)]
        for sid in expired:
            del self._records[sid]
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep(datetime.now(UTC))


class SqlSessionStore:
    """Sessions in the web_sessions table; each call opens and closes its own DB session."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def _fail(self, op: str, exc: SQLAlchemyError) -> StoreUnavailableError:
        logger.error(
            "Session store operation failed",
            extra={"operation": op, "error_type": type(exc).__name__},
        )
        return StoreUnavailableError("Session store is unavailable.")

    def create(self, data: dict[str, Any], max_age: timedelta) -> SessionRecord:
        record = SessionRecord(
            id=_new_session_id(),
            data=dict(data),
            expires_at=datetime.now(UTC) + max_age,
        )
        db = self.session_factory()
        try:
            db.add(WebSession(id=record.id, data=record.data, expires_at=record.expires_at))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._fail("create", e) from e
        finally:
            db.close()
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        db = self.session_factory()
        try:
            row = db.get(WebSession, session_id)
            if row is None:
                return None
            record = SessionRecord(row.id, dict(row.data or {}), _as_utc(row.expires_at))
            if record.is_expired():
                db.delete(row)
                db.commit()
                return None
            return record
        except SQLAlchemyError as e:
            db.rollback()
            raise self._fail("get", e) from e
        finally:
            db.close()

    def save(self, record: SessionRecord) -> None:
        db = self.session_factory()
        try:
            row = db.get(WebSession, record.id)
            if row is None:
                return
            row.data = dict(record.data)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._fail("save", e) from e
        finally:
            db.close()

    def destroy(self, session_id: str) -> None:
        db = self.session_factory()
        try:
            db.query(WebSession).filter(WebSession.id == session_id).delete(
                synchronize_session=False
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._fail("destroy", e) from e
        finally:
            db.close()

    def purge_expired(self) -> int:
        db = self.session_factory()
        try:
            deleted = (
                db.query(WebSession)
                .filter(WebSession.expires_at <= datetime.now(UTC))
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._fail("purge_expired", e) from e
        finally:
            db.close()
        return deleted


def build_session_store(
    settings: "Settings",
    session_factory: Callable[[], Session] | None = None,
) -> SessionStore:
    """Pick the session backend named by SESSION_BACKEND."""
    if settings.SESSION_BACKEND == "database":
        if session_factory is None:
            from cinecriticas.core.database import SessionLocal

            session_factory = SessionLocal
        return SqlSessionStore(session_factory)
    return InMemorySessionStore()
