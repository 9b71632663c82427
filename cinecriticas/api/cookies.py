"""Session-id and token cookies. Both are httpOnly; Secure follows Settings.cookie_secure."""

from typing import TYPE_CHECKING

from starlette.responses import Response

from cinecriticas.services.auth import IssuedCredentials
from cinecriticas.services.session_store import SessionRecord

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings

COOKIE_PATH = "/"


def set_session_cookie(response: Response, session: SessionRecord, settings: "Settings") -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.id,
        max_age=session.max_age_seconds,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.cookie_secure,
        path=COOKIE_PATH,
    )


def set_auth_cookies(response: Response, issued: IssuedCredentials, settings: "Settings") -> None:
    """Set both carriers from one issuance."""
    set_session_cookie(response, issued.session, settings)
    response.set_cookie(
        key=settings.TOKEN_COOKIE_NAME,
        value=issued.token,
        max_age=settings.JWT_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.cookie_secure,
        path=COOKIE_PATH,
    )


def clear_token_cookie(response: Response, settings: "Settings") -> None:
    response.delete_cookie(
        key=settings.TOKEN_COOKIE_NAME,
        path=COOKIE_PATH,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.cookie_secure,
    )


def clear_auth_cookies(response: Response, settings: "Settings") -> None:
    response.delete_cookie(key=settings.SESSION_COOKIE_NAME, path=COOKIE_PATH)
    clear_token_cookie(response, settings)


def response_sets_cookie(response: Response, name: str) -> bool:
    """True if the handler already wrote (or deleted) this cookie on the response."""
    prefix = f"{name}=".encode("latin-1")
    return any(
        key.lower() == b"set-cookie" and value.startswith(prefix)
        for key, value in response.raw_headers
    )
