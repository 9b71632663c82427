"""ORM model for user accounts (auth and RBAC)."""

from sqlalchemy import Column, DateTime, Integer, String, func

from cinecriticas.models.base import Base


class User(Base):
    """
    User account for session/JWT authentication and role-based access control.

    role: 'admin' or 'user'. password_hash always holds a bcrypt hash.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(30), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="user", server_default="user")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
