"""
Credential verification and the session/token issuer.

login and register are the only paths that produce an identity: both end in
issue(), which writes the same public claims into a new server-side session
and a signed JWT. Nothing here talks HTTP; routes translate the errors below.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, NoReturn

from cinecriticas.core.security import create_access_token, verify_password
from cinecriticas.schemas.auth import Claims, Role, UserRecord
from cinecriticas.services.session_store import SessionRecord, SessionStore
from cinecriticas.services.user_store import DuplicateUserError, UserStore

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings

logger = logging.getLogger(__name__)

USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 30
PASSWORD_MIN_LEN = 6

SESSION_USER_KEY = "user"
SESSION_RETURN_TO_KEY = "return_to"

INVALID_CREDENTIALS_MESSAGE = "Incorrect username or password."


class AuthError(Exception):
    """Base for errors the HTTP layer turns into a user-facing message."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidCredentialsError(AuthError):
    """Unknown username or wrong password; deliberately indistinguishable."""

    def __init__(self) -> None:
        super().__init__(INVALID_CREDENTIALS_MESSAGE)


class ValidationFailedError(AuthError):
    """Input breaks a registration/login rule; message is the specific reason."""


class UsernameTakenError(AuthError):
    def __init__(self) -> None:
        super().__init__("That username is already taken.")


class EmailTakenError(AuthError):
    def __init__(self) -> None:
        super().__init__("That email is already registered.")


class UserNotFoundError(AuthError):
    def __init__(self) -> None:
        super().__init__("User not found.")


class SelfDeleteError(AuthError):
    def __init__(self) -> None:
        super().__init__("You cannot delete the account you are signed in with.")


@dataclass(frozen=True)
class IssuedCredentials:
    """Both identity carriers produced by one successful login/registration."""

    claims: Claims
    session: SessionRecord
    token: str


def build_claims(user: UserRecord) -> Claims:
    """Public claims only; the password hash never leaves the store."""
    return Claims(id=user.id, username=user.username, email=user.email, role=user.role)


def issue(
    user: UserRecord,
    sessions: SessionStore,
    settings: "Settings",
    carry_over: dict[str, Any] | None = None,
) -> IssuedCredentials:
    """Create a session and a token from the same claims."""
    claims = build_claims(user)
    data: dict[str, Any] = dict(carry_over or {})
    data[SESSION_USER_KEY] = claims.model_dump()
    session = sessions.create(data, timedelta(minutes=settings.SESSION_MAX_AGE_MINUTES))
    token = create_access_token(claims, settings)
    return IssuedCredentials(claims=claims, session=session, token=token)


def _raise_taken(err: DuplicateUserError) -> NoReturn:
    if err.field == "username":
        raise UsernameTakenError() from err
    raise EmailTakenError() from err


def _valid_email(email: str) -> bool:
    local, _, domain = email.partition("@")
    return bool(local) and bool(domain)


def authenticate(store: UserStore, username: str, password: str) -> UserRecord:
    """Return the user whose password matches, or raise InvalidCredentialsError."""
    if not username or not password:
        raise ValidationFailedError("Username and password are required.")
    user = store.get_user_by_username(username)
    if user is None:
        logger.info("Login failed: unknown username", extra={"username": username})
        raise InvalidCredentialsError()
    if not verify_password(password, user.password_hash):
        logger.info("Login failed: wrong password", extra={"user_id": user.id})
        raise InvalidCredentialsError()
    return user


def _retire_session(sessions: SessionStore, session_id: str | None) -> dict[str, Any]:
    """Destroy the pre-login session, keeping only where the user was headed."""
    if not session_id:
        return {}
    previous = sessions.get(session_id)
    sessions.destroy(session_id)
    if previous is not None and previous.data.get(SESSION_RETURN_TO_KEY):
        return {SESSION_RETURN_TO_KEY: previous.data[SESSION_RETURN_TO_KEY]}
    return {}


def login(
    store: UserStore,
    sessions: SessionStore,
    username: str,
    password: str,
    settings: "Settings",
    previous_session_id: str | None = None,
) -> IssuedCredentials:
    """Verify credentials and issue a fresh session id plus token."""
    user = authenticate(store, username, password)
    carry_over = _retire_session(sessions, previous_session_id)
    issued = issue(user, sessions, settings, carry_over=carry_over)
    logger.info("Login succeeded", extra={"user_id": user.id, "role": user.role})
    return issued


def validate_registration(
    username: str,
    email: str,
    password: str,
    confirm_password: str,
) -> None:
    """Raise ValidationFailedError with the first broken rule."""
    if not username or not email or not password or not confirm_password:
        raise ValidationFailedError("All fields are required.")
    if not USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN:
        raise ValidationFailedError(
            f"Username must be between {USERNAME_MIN_LEN} and {USERNAME_MAX_LEN} characters."
        )
    if not _valid_email(email):
        raise ValidationFailedError("Please enter a valid email address.")
    if len(password) < PASSWORD_MIN_LEN:
        raise ValidationFailedError(
            f"Password must be at least {PASSWORD_MIN_LEN} characters."
        )
    if password != confirm_password:
        raise ValidationFailedError("Passwords do not match.")


def register(
    store: UserStore,
    sessions: SessionStore,
    username: str,
    email: str,
    password: str,
    confirm_password: str,
    settings: "Settings",
    previous_session_id: str | None = None,
) -> IssuedCredentials:
    """
    Create an account and log it in. The first account of an empty store becomes
    admin; the store decides that atomically (role=None).
    """
    validate_registration(username, email, password, confirm_password)
    if store.get_user_by_username(username) is not None:
        raise UsernameTakenError()
    try:
        user = store.create_user(username=username, email=email, password_hash=password)
    except DuplicateUserError as e:
        _raise_taken(e)
    logger.info("User registered", extra={"user_id": user.id, "role": user.role})
    carry_over = _retire_session(sessions, previous_session_id)
    return issue(user, sessions, settings, carry_over=carry_over)


def logout(sessions: SessionStore, session_id: str | None) -> None:
    """Destroy the server-side session. Issued tokens stay valid until exp."""
    if session_id:
        sessions.destroy(session_id)


def create_user_as_admin(
    store: UserStore,
    actor: Claims,
    username: str,
    email: str,
    password: str,
    role: Role,
) -> UserRecord:
    """Admin-initiated creation with an explicit role; same input rules as registration."""
    validate_registration(username, email, password, password)
    try:
        user = store.create_user(
            username=username, email=email, password_hash=password, role=role
        )
    except DuplicateUserError as e:
        _raise_taken(e)
    logger.info(
        "User created by admin",
        extra={"actor_id": actor.id, "user_id": user.id, "role": user.role},
    )
    return user


def update_user(
    store: UserStore,
    actor: Claims,
    user_id: int,
    username: str | None = None,
    email: str | None = None,
    password: str | None = None,
    role: Role | None = None,
) -> UserRecord:
    """
    Change profile fields and/or role. Sessions and tokens already issued to the
    target keep their old claims until they expire.
    """
    if username is not None and not USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN:
        raise ValidationFailedError(
            f"Username must be between {USERNAME_MIN_LEN} and {USERNAME_MAX_LEN} characters."
        )
    if email is not None and not _valid_email(email):
        raise ValidationFailedError("Please enter a valid email address.")
    if password is not None and len(password) < PASSWORD_MIN_LEN:
        raise ValidationFailedError(
            f"Password must be at least {PASSWORD_MIN_LEN} characters."
        )
    try:
        user = store.update_user(
            user_id, username=username, email=email, password_hash=password, role=role
        )
    except DuplicateUserError as e:
        _raise_taken(e)
    if user is None:
        raise UserNotFoundError()
    logger.info(
        "User updated by admin",
        extra={"actor_id": actor.id, "user_id": user_id, "role": user.role},
    )
    return user


def delete_user(store: UserStore, actor: Claims, user_id: int) -> None:
    """Delete any account except the one the actor is authenticated as."""
    if actor.id == user_id:
        raise SelfDeleteError()
    if not store.delete_user(user_id):
        raise UserNotFoundError()
    logger.info("User deleted by admin", extra={"actor_id": actor.id, "user_id": user_id})
