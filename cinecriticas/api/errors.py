"""
Exception handlers for the auth guards and store outages.

API-style callers (paths under API_V1_PREFIX, or an Accept header asking for
JSON) get JSON bodies with 401/403/503. Browser callers get a redirect to the
login page, a 403 page, or a 503 page.
"""

import logging
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from cinecriticas.api.cookies import set_session_cookie
from cinecriticas.api.templating import templates
from cinecriticas.core.config import Settings
from cinecriticas.services.auth import SESSION_RETURN_TO_KEY
from cinecriticas.services.auth_gate import ForbiddenError, GateResult, LoginRequiredError
from cinecriticas.services.session_store import SessionRecord, SessionStore
from cinecriticas.services.user_store import StoreUnavailableError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
STORE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."


def wants_json(request: Request, settings: Settings) -> bool:
    if request.url.path.startswith(settings.API_V1_PREFIX):
        return True
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


def store_unavailable_response(request: Request, settings: Settings) -> Response:
    if wants_json(request, settings):
        return JSONResponse(status_code=503, content={"detail": STORE_UNAVAILABLE_MESSAGE})
    return templates.TemplateResponse(
        request,
        "error.html",
        {"user": None, "message": STORE_UNAVAILABLE_MESSAGE},
        status_code=503,
    )


def _remember_return_to(
    sessions: SessionStore,
    result: GateResult | None,
    return_to: str,
    settings: Settings,
) -> SessionRecord | None:
    """Write return_to into the caller's session; returns a session created for it, if any."""
    if result is not None and result.session is not None:
        result.session.data[SESSION_RETURN_TO_KEY] = return_to
        sessions.save(result.session)
        return None
    return sessions.create(
        {SESSION_RETURN_TO_KEY: return_to},
        timedelta(minutes=settings.SESSION_MAX_AGE_MINUTES),
    )


async def login_required_handler(request: Request, exc: LoginRequiredError) -> Response:
    settings: Settings = request.app.state.settings
    if wants_json(request, settings):
        return JSONResponse(
            status_code=401,
            content={"detail": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        )
    response = RedirectResponse(LOGIN_PATH, status_code=302)
    if exc.return_to and request.method == "GET":
        try:
            created = await run_in_threadpool(
                _remember_return_to,
                request.app.state.session_store,
                getattr(request.state, "auth", None),
                exc.return_to,
                settings,
            )
        except StoreUnavailableError as e:
            logger.error("Could not remember return_to: %s", e.message)
            return store_unavailable_response(request, settings)
        if created is not None:
            set_session_cookie(response, created, settings)
    return response


async def forbidden_handler(request: Request, exc: ForbiddenError) -> Response:
    settings: Settings = request.app.state.settings
    result = getattr(request.state, "auth", None)
    logger.info(
        "Forbidden",
        extra={
            "path": request.url.path,
            "user_id": result.identity.id if result is not None and result.identity else None,
        },
    )
    if wants_json(request, settings):
        return JSONResponse(status_code=403, content={"detail": exc.message})
    return templates.TemplateResponse(
        request,
        "forbidden.html",
        {"user": result.identity if result is not None else None, "message": exc.message},
        status_code=403,
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> Response:
    logger.error(
        "Store unavailable while handling %s: %s", request.url.path, exc.message, exc_info=exc
    )
    return store_unavailable_response(request, request.app.state.settings)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoginRequiredError, login_required_handler)
    app.add_exception_handler(ForbiddenError, forbidden_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
