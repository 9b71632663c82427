"""AuthGateMiddleware: resolve the caller once per request and reconcile cookies on the way out."""

import logging

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from cinecriticas.api.cookies import clear_token_cookie, response_sets_cookie, set_session_cookie
from cinecriticas.api.errors import store_unavailable_response
from cinecriticas.services.auth_gate import resolve_identity
from cinecriticas.services.user_store import StoreUnavailableError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def bearer_token(authorization: str | None) -> str | None:
    """Extract <token> from 'Authorization: Bearer <token>'."""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class AuthGateMiddleware(BaseHTTPMiddleware):
    """
    Stores the GateResult on request.state.auth for the guard dependencies.

    After the handler runs, sets the cookie for a session created by token
    mirroring and deletes a token cookie that failed verification, unless the
    handler already wrote that cookie itself (login, logout).
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = request.app.state.settings
        sessions = request.app.state.session_store
        try:
            result = await run_in_threadpool(
                resolve_identity,
                sessions,
                settings,
                session_id=request.cookies.get(settings.SESSION_COOKIE_NAME),
                bearer_token=bearer_token(request.headers.get("Authorization")),
                cookie_token=request.cookies.get(settings.TOKEN_COOKIE_NAME),
            )
        except StoreUnavailableError as e:
            logger.error("Identity resolution failed: %s", e.message)
            return store_unavailable_response(request, settings)

        request.state.auth = result
        response = await call_next(request)

        if (
            result.session_created
            and result.session is not None
            and not response_sets_cookie(response, settings.SESSION_COOKIE_NAME)
        ):
            set_session_cookie(response, result.session, settings)
        if result.clear_token_cookie and not response_sets_cookie(
            response, settings.TOKEN_COOKIE_NAME
        ):
            clear_token_cookie(response, settings)
        return response
