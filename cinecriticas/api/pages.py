"""Server-rendered pages: login/register forms, logout, user dashboard and admin panel."""

import logging
from typing import Annotated

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from cinecriticas.api.cookies import clear_auth_cookies, set_auth_cookies
from cinecriticas.api.deps import (
    AdminUser,
    CurrentUser,
    GateResultDep,
    OptionalUser,
    SessionStoreDep,
    SettingsDep,
    UserStoreDep,
)
from cinecriticas.api.errors import wants_json
from cinecriticas.api.templating import templates
from cinecriticas.services import auth as auth_service
from cinecriticas.services.auth import (
    SESSION_RETURN_TO_KEY,
    AuthError,
    InvalidCredentialsError,
    IssuedCredentials,
    ValidationFailedError,
)
from cinecriticas.services.session_store import SessionStore

logger = logging.getLogger(__name__)
router = APIRouter(include_in_schema=False)

HOME_PATH = "/"
DASHBOARD_PATH = "/dashboard"
ADMIN_PATH = "/admin"


def _safe_local_path(path: str | None) -> str | None:
    # Only same-site paths; "//host" would be an open redirect
    if not path or not path.startswith("/") or path.startswith("//"):
        return None
    return path


def _landing_path(
    issued: IssuedCredentials,
    sessions: SessionStore,
    default: str | None = None,
) -> str:
    """Where to go after login: the remembered path, else default or the role's home."""
    return_to = issued.session.data.pop(SESSION_RETURN_TO_KEY, None)
    if return_to is not None:
        sessions.save(issued.session)
    target = _safe_local_path(return_to)
    if target:
        return target
    if default is not None:
        return default
    return ADMIN_PATH if issued.claims.is_admin else DASHBOARD_PATH


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(path, status_code=302)


@router.get("/")
def home(request: Request, user: OptionalUser) -> Response:
    return templates.TemplateResponse(request, "index.html", {"user": user})


@router.get("/login")
def login_form(request: Request, user: OptionalUser) -> Response:
    if user is not None:
        return _redirect(HOME_PATH)
    return templates.TemplateResponse(request, "login.html", {"user": None, "error": None})


@router.post("/login")
def login_submit(
    request: Request,
    store: UserStoreDep,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
    username: Annotated[str, Form()] = "",
    password: Annotated[str, Form()] = "",
) -> Response:
    try:
        issued = auth_service.login(
            store,
            sessions,
            username,
            password,
            settings,
            previous_session_id=gate.session.id if gate.session else None,
        )
    except (InvalidCredentialsError, ValidationFailedError) as e:
        return templates.TemplateResponse(
            request,
            "login.html",
            {"user": None, "error": e.message, "username": username},
            status_code=401 if isinstance(e, InvalidCredentialsError) else 400,
        )
    response = _redirect(_landing_path(issued, sessions))
    set_auth_cookies(response, issued, settings)
    return response


@router.get("/register")
def register_form(request: Request, user: OptionalUser) -> Response:
    if user is not None:
        return _redirect(HOME_PATH)
    return templates.TemplateResponse(
        request,
        "register.html",
        {"user": None, "error": None, "username": "", "email": ""},
    )


@router.post("/register")
def register_submit(
    request: Request,
    store: UserStoreDep,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
    username: Annotated[str, Form()] = "",
    email: Annotated[str, Form()] = "",
    password: Annotated[str, Form()] = "",
    confirm_password: Annotated[str, Form(alias="confirmPassword")] = "",
) -> Response:
    try:
        issued = auth_service.register(
            store,
            sessions,
            username,
            email,
            password,
            confirm_password,
            settings,
            previous_session_id=gate.session.id if gate.session else None,
        )
    except AuthError as e:
        return templates.TemplateResponse(
            request,
            "register.html",
            {"user": None, "error": e.message, "username": username, "email": email},
            status_code=400,
        )
    response = _redirect(_landing_path(issued, sessions, default=HOME_PATH))
    set_auth_cookies(response, issued, settings)
    return response


@router.post("/logout")
def logout(
    request: Request,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
) -> Response:
    auth_service.logout(sessions, gate.session.id if gate.session else None)
    if wants_json(request, settings):
        response: Response = JSONResponse({"success": True, "message": "Logged out"})
    else:
        response = _redirect(HOME_PATH)
    clear_auth_cookies(response, settings)
    return response


@router.get("/dashboard")
def dashboard(request: Request, user: CurrentUser) -> Response:
    return templates.TemplateResponse(request, "dashboard.html", {"user": user})


@router.get("/admin")
def admin_panel(request: Request, admin: AdminUser, store: UserStoreDep) -> Response:
    return templates.TemplateResponse(
        request,
        "admin.html",
        {"user": admin, "users": store.list_users()},
    )
