"""
Per-request identity resolution and role guards.

resolve_identity checks, first match wins:
  1. a live session holding user claims,
  2. a token that verifies: the Authorization header first, then the token cookie
     (a bad header does not hide a good cookie),
  3. otherwise anonymous.

A valid cookie token is mirrored into a session so later page renders find the
user there; no new token is minted. A cookie token that fails verification is
flagged for deletion and the request continues anonymously.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Literal

from pydantic import ValidationError

from cinecriticas.core.security import TokenError, decode_access_token
from cinecriticas.schemas.auth import Claims
from cinecriticas.services.auth import SESSION_USER_KEY
from cinecriticas.services.session_store import SessionRecord, SessionStore

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings

logger = logging.getLogger(__name__)

IdentitySource = Literal["session", "token", "anonymous"]


@dataclass
class GateResult:
    """Outcome of identity resolution for one request."""

    identity: Claims | None
    source: IdentitySource
    session: SessionRecord | None = None
    # A session created here (token mirroring) whose id the response must set
    session_created: bool = False
    # The token cookie failed verification and must be deleted on the response
    clear_token_cookie: bool = False
    token_error: TokenError | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


class LoginRequiredError(Exception):
    """No identity: send the caller to log in, then back to return_to."""

    def __init__(self, return_to: str | None = None, token_error: TokenError | None = None) -> None:
        self.return_to = return_to
        self.token_error = token_error
        self.message = "Invalid or expired token" if token_error else "Not authenticated"
        super().__init__(self.message)


class ForbiddenError(Exception):
    """Authenticated, but the role is not enough."""

    def __init__(self, message: str = "Admin access required") -> None:
        self.message = message
        super().__init__(message)


def _session_claims(session: SessionRecord) -> Claims | None:
    raw = session.data.get(SESSION_USER_KEY)
    if not raw:
        return None
    try:
        return Claims.model_validate(raw)
    except ValidationError:
        logger.warning("Discarding malformed session claims", extra={"session_id_prefix": session.id[:8]})
        return None


def _mirror_into_session(
    sessions: SessionStore,
    session: SessionRecord | None,
    claims: Claims,
    settings: "Settings",
) -> tuple[SessionRecord, bool]:
    if session is not None:
        session.data[SESSION_USER_KEY] = claims.model_dump()
        sessions.save(session)
        return session, False
    created = sessions.create(
        {SESSION_USER_KEY: claims.model_dump()},
        timedelta(minutes=settings.SESSION_MAX_AGE_MINUTES),
    )
    return created, True


def _verify(
    token: str | None,
    carrier: str,
    settings: "Settings",
) -> tuple[Claims | None, TokenError | None]:
    if not token:
        return None, None
    try:
        return decode_access_token(token, settings), None
    except TokenError as e:
        logger.info("Rejected token", extra={"reason": type(e).__name__, "carrier": carrier})
        return None, e


def resolve_identity(
    sessions: SessionStore,
    settings: "Settings",
    session_id: str | None = None,
    bearer_token: str | None = None,
    cookie_token: str | None = None,
) -> GateResult:
    """Work out who is calling. Token problems never raise; store outages do."""
    session = sessions.get(session_id) if session_id else None
    if session is not None:
        claims = _session_claims(session)
        if claims is not None:
            return GateResult(identity=claims, source="session", session=session)

    claims, header_error = _verify(bearer_token, "header", settings)
    if claims is not None:
        return GateResult(identity=claims, source="token", session=session)

    claims, cookie_error = _verify(cookie_token, "cookie", settings)
    if claims is None:
        return GateResult(
            identity=None,
            source="anonymous",
            session=session,
            clear_token_cookie=cookie_error is not None,
            token_error=header_error or cookie_error,
        )

    session, created = _mirror_into_session(sessions, session, claims, settings)
    return GateResult(
        identity=claims,
        source="token",
        session=session,
        session_created=created,
    )


def require_auth(result: GateResult, requested_path: str | None = None) -> Claims:
    """Return the caller's claims or raise LoginRequiredError remembering requested_path."""
    if result.identity is None:
        raise LoginRequiredError(return_to=requested_path, token_error=result.token_error)
    return result.identity


def require_admin(result: GateResult, requested_path: str | None = None) -> Claims:
    """Anonymous callers must log in; logged-in non-admins are forbidden."""
    claims = require_auth(result, requested_path)
    if not claims.is_admin:
        raise ForbiddenError()
    return claims
