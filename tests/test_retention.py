"""Tests for the expired-session purge CLI (cinecriticas.retention)."""

import unittest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cinecriticas import retention
from cinecriticas.core.config import Settings
from cinecriticas.models import Base, WebSession
from cinecriticas.services.session_store import SqlSessionStore
from cinecriticas.services.user_store import StoreUnavailableError


def _settings(backend: str) -> Settings:
    return Settings(_env_file=None, SESSION_BACKEND=backend, DATABASE_URL="sqlite://")


class TestRetentionMemoryBackend(unittest.TestCase):
    """With in-process sessions there is no table to purge."""

    def test_returns_zero_and_does_not_open_a_session(self) -> None:
        factory = MagicMock()
        with patch.object(retention, "get_settings", return_value=_settings("memory")), \
                patch.object(retention, "SessionLocal", factory):
            self.assertEqual(retention.main(), 0)
        factory.assert_not_called()


class TestRetentionDatabaseBackend(unittest.TestCase):
    """Expired web_sessions rows are deleted; live ones stay."""

    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def test_purges_expired_rows(self) -> None:
        store = SqlSessionStore(self.factory)
        store.create({"user": {"id": 1}}, timedelta(seconds=-1))
        live = store.create({"user": {"id": 2}}, timedelta(hours=24))

        with patch.object(retention, "get_settings", return_value=_settings("database")), \
                patch.object(retention, "SessionLocal", self.factory):
            self.assertEqual(retention.main(), 0)

        db = self.factory()
        try:
            self.assertEqual([row.id for row in db.query(WebSession).all()], [live.id])
        finally:
            db.close()

    def test_store_failure_exits_nonzero(self) -> None:
        broken = MagicMock()
        broken.return_value.purge_expired.side_effect = StoreUnavailableError("Session store is unavailable.")
        with patch.object(retention, "get_settings", return_value=_settings("database")), \
                patch.object(retention, "SqlSessionStore", broken):
            self.assertEqual(retention.main(), 1)
