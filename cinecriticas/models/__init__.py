"""SQLAlchemy ORM models."""

from cinecriticas.models.base import Base
from cinecriticas.models.user import User
from cinecriticas.models.web_session import WebSession

__all__ = ["Base", "User", "WebSession"]
