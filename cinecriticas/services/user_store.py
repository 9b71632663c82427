"""
Credential store: user records behind an interface the auth core depends on.

Two implementations share the same contract:
  - InMemoryUserStore: process-local, lock-protected (tests, demos, single worker).
  - SqlUserStore: SQLAlchemy session bound to SQLite or PostgreSQL.

Every password_hash written through a store passes the idempotent hasher guard,
so plaintext never reaches storage and stored hashes are never re-hashed.
"""

import itertools
import logging
import threading
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import case, func, insert, literal, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cinecriticas.core.security import hash_password
from cinecriticas.models import User
from cinecriticas.schemas.auth import Role, UserRecord

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"username", "email", "password_hash", "role"})


class StoreUnavailableError(Exception):
    """Raised when the persistence backend cannot be reached or fails unexpectedly."""

    def __init__(self, message: str = "User store is unavailable.") -> None:
        self.message = message
        super().__init__(message)


class DuplicateUserError(Exception):
    """Raised when a create/update would violate username or email uniqueness."""

    def __init__(self, field: str) -> None:
        self.field = field
        self.message = f"A user with this {field} already exists."
        super().__init__(self.message)


class UserStore(Protocol):
    """Persistence operations the auth core needs."""

    def get_user_by_username(self, username: str) -> UserRecord | None: ...

    def get_user_by_id(self, user_id: int) -> UserRecord | None: ...

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        role: Role | None = None,
    ) -> UserRecord:
        """Create a user. role=None means admin for an empty store, user otherwise."""
        ...

    def count_users(self) -> int: ...

    def update_user(self, user_id: int, **fields: Any) -> UserRecord | None: ...

    def delete_user(self, user_id: int) -> bool: ...

    def list_users(self) -> list[UserRecord]: ...


def _check_update_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
    changes = {k: v for k, v in fields.items() if v is not None}
    if "password_hash" in changes:
        changes["password_hash"] = hash_password(changes["password_hash"])
    return changes


class InMemoryUserStore:
    """Dict-backed store. One lock serializes writes, so the bootstrap admin check is atomic."""

    def __init__(self) -> None:
        self._users: dict[int, UserRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _find(self, field: str, value: str, exclude_id: int | None = None) -> UserRecord | None:
        for user in self._users.values():
            if getattr(user, field) == value and user.id != exclude_id:
                return user
        return None

    def get_user_by_username(self, username: str) -> UserRecord | None:
        with self._lock:
            return self._find("username", username)

    def get_user_by_id(self, user_id: int) -> UserRecord | None:
        with self._lock:
            return self._users.get(user_id)

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        role: Role | None = None,
    ) -> UserRecord:
        password_hash = hash_password(password_hash)
        with self._lock:
            for field, value in (("username", username), ("email", email)):
                if self._find(field, value) is not None:
                    raise DuplicateUserError(field)
            if role is None:
                role = "admin" if not self._users else "user"
            user = UserRecord(
                id=next(self._ids),
                username=username,
                email=email,
                password_hash=password_hash,
                role=role,
                created_at=datetime.now(UTC),
            )
            self._users[user.id] = user
            return user

    def count_users(self) -> int:
        with self._lock:
            return len(self._users)

    def update_user(self, user_id: int, **fields: Any) -> UserRecord | None:
        changes = _check_update_fields(fields)
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            for field in ("username", "email"):
                if field in changes and self._find(field, changes[field], exclude_id=user_id):
                    raise DuplicateUserError(field)
            updated = user.model_copy(update=changes)
            self._users[user_id] = updated
            return updated

    def delete_user(self, user_id: int) -> bool:
        with self._lock:
            return self._users.pop(user_id, None) is not None

    def list_users(self) -> list[UserRecord]:
        with self._lock:
            return sorted(self._users.values(), key=lambda u: (u.created_at, u.id), reverse=True)


class SqlUserStore:
    """SQLAlchemy-backed store; one instance per request-scoped DB session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _fail(self, op: str, exc: SQLAlchemyError) -> StoreUnavailableError:
        self.db.rollback()
        logger.error(
            "User store operation failed",
            extra={"operation": op, "error_type": type(exc).__name__},
        )
        return StoreUnavailableError()

    def _duplicate_field(self, username: str | None, email: str | None, exclude_id: int | None) -> str:
        """After an IntegrityError, work out which unique column collided."""
        query = self.db.query(User.id)
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if username is not None and query.filter(User.username == username).first():
            return "username"
        return "email"

    def get_user_by_username(self, username: str) -> UserRecord | None:
        try:
            user = self.db.query(User).filter(User.username == username).first()
        except SQLAlchemyError as e:
            raise self._fail("get_user_by_username", e) from e
        return UserRecord.model_validate(user) if user is not None else None

    def get_user_by_id(self, user_id: int) -> UserRecord | None:
        try:
            user = self.db.get(User, user_id)
        except SQLAlchemyError as e:
            raise self._fail("get_user_by_id", e) from e
        return UserRecord.model_validate(user) if user is not None else None

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        role: Role | None = None,
    ) -> UserRecord:
        password_hash = hash_password(password_hash)
        if role is None:
            # Decided inside the INSERT so two racing first registrations cannot both see 0 users.
            role_expr = case(
                (select(func.count(User.id)).correlate(None).scalar_subquery() == 0, literal("admin")),
                else_=literal("user"),
            )
        else:
            role_expr = literal(role)
        stmt = insert(User).from_select(
            ["username", "email", "password_hash", "role"],
            select(literal(username), literal(email), literal(password_hash), role_expr),
        )
        try:
            if role is None and self.db.get_bind().dialect.name == "postgresql":
                # Under READ COMMITTED the count subquery alone is not enough.
                self.db.execute(text("LOCK TABLE users IN SHARE ROW EXCLUSIVE MODE"))
            self.db.execute(stmt)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateUserError(self._duplicate_field(username, email, None)) from e
        except SQLAlchemyError as e:
            raise self._fail("create_user", e) from e
        created = self.get_user_by_username(username)
        if created is None:
            raise StoreUnavailableError("User was not persisted.")
        return created

    def count_users(self) -> int:
        try:
            return self.db.query(func.count(User.id)).scalar() or 0
        except SQLAlchemyError as e:
            raise self._fail("count_users", e) from e

    def update_user(self, user_id: int, **fields: Any) -> UserRecord | None:
        changes = _check_update_fields(fields)
        try:
            user = self.db.get(User, user_id)
            if user is None:
                return None
            for field, value in changes.items():
                setattr(user, field, value)
            self.db.commit()
            self.db.refresh(user)
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateUserError(
                self._duplicate_field(changes.get("username"), changes.get("email"), user_id)
            ) from e
        except SQLAlchemyError as e:
            raise self._fail("update_user", e) from e
        return UserRecord.model_validate(user)

    def delete_user(self, user_id: int) -> bool:
        try:
            deleted = (
                self.db.query(User)
                .filter(User.id == user_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail("delete_user", e) from e
        return deleted > 0

    def list_users(self) -> list[UserRecord]:
        try:
            users = self.db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
        except SQLAlchemyError as e:
            raise self._fail("list_users", e) from e
        return [UserRecord.model_validate(u) for u in users]
