"""ORM model for server-side browser sessions (SESSION_BACKEND=database)."""

from sqlalchemy import JSON, Column, DateTime, String, func

from cinecriticas.models.base import Base


class WebSession(Base):
    """One row per browser session; data holds the public claims and return_to."""

    __tablename__ = "web_sessions"

    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
