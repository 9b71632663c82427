"""FastAPI dependencies: settings, stores and the auth guards built on request.state.auth."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cinecriticas.core.config import Settings
from cinecriticas.core.database import get_db
from cinecriticas.schemas.auth import Claims
from cinecriticas.services.auth_gate import GateResult, require_admin, require_auth
from cinecriticas.services.session_store import SessionStore
from cinecriticas.services.user_store import SqlUserStore, UserStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_user_store(db: Annotated[Session, Depends(get_db)]) -> UserStore:
    return SqlUserStore(db)


def get_gate_result(request: Request) -> GateResult:
    """Identity resolved by AuthGateMiddleware; anonymous if the middleware did not run."""
    result = getattr(request.state, "auth", None)
    if result is None:
        return GateResult(identity=None, source="anonymous")
    return result


def requested_path(request: Request) -> str:
    """Path plus query string, as remembered for the post-login redirect."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def get_optional_user(
    result: Annotated[GateResult, Depends(get_gate_result)],
) -> Claims | None:
    return result.identity


def get_current_user(
    request: Request,
    result: Annotated[GateResult, Depends(get_gate_result)],
) -> Claims:
    """Dependency: require an identity. Raises LoginRequiredError (401 or login redirect)."""
    return require_auth(result, requested_path(request))


def get_admin_user(
    request: Request,
    result: Annotated[GateResult, Depends(get_gate_result)],
) -> Claims:
    """Dependency: require role 'admin'. Anonymous -> LoginRequiredError, others -> ForbiddenError."""
    return require_admin(result, requested_path(request))


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
UserStoreDep = Annotated[UserStore, Depends(get_user_store)]
GateResultDep = Annotated[GateResult, Depends(get_gate_result)]
CurrentUser = Annotated[Claims, Depends(get_current_user)]
AdminUser = Annotated[Claims, Depends(get_admin_user)]
OptionalUser = Annotated[Claims | None, Depends(get_optional_user)]
