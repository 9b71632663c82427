"""JSON login, registration, logout and current-user endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Response, status

from cinecriticas.api.cookies import clear_auth_cookies, set_auth_cookies
from cinecriticas.api.deps import (
    CurrentUser,
    GateResultDep,
    SessionStoreDep,
    SettingsDep,
    UserStoreDep,
)
from cinecriticas.schemas.auth import (
    AuthResponse,
    Claims,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
)
from cinecriticas.services import auth as auth_service
from cinecriticas.services.auth import (
    EmailTakenError,
    InvalidCredentialsError,
    UsernameTakenError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    response: Response,
    store: UserStoreDep,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
) -> AuthResponse:
    """
    Authenticate with username and password. Returns a JWT and also sets the
    session and token cookies, so both browser and API clients are covered.
    Include the token in the Authorization header as: Bearer <access_token>
    """
    try:
        issued = auth_service.login(
            store,
            sessions,
            body.username,
            body.password,
            settings,
            previous_session_id=gate.session.id if gate.session else None,
        )
    except ValidationFailedError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    set_auth_cookies(response, issued, settings)
    return AuthResponse(access_token=issued.token, user=issued.claims)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    response: Response,
    store: UserStoreDep,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
) -> AuthResponse:
    """Create an account and log it in. The very first account becomes admin."""
    try:
        issued = auth_service.register(
            store,
            sessions,
            body.username,
            body.email,
            body.password,
            body.confirm_password,
            settings,
            previous_session_id=gate.session.id if gate.session else None,
        )
    except ValidationFailedError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    except (UsernameTakenError, EmailTakenError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    set_auth_cookies(response, issued, settings)
    return AuthResponse(access_token=issued.token, user=issued.claims)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    response: Response,
    sessions: SessionStoreDep,
    settings: SettingsDep,
    gate: GateResultDep,
) -> LogoutResponse:
    """Destroy the session and clear both cookies. Issued tokens stay valid until they expire."""
    auth_service.logout(sessions, gate.session.id if gate.session else None)
    clear_auth_cookies(response, settings)
    return LogoutResponse()


@router.get("/me", response_model=Claims)
def me(current_user: CurrentUser) -> Claims:
    """Claims of the caller, from the session or the token."""
    return current_user
