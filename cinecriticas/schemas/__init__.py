"""Pydantic request/response schemas."""

from cinecriticas.schemas.auth import (
    AuthResponse,
    Claims,
    LoginRequest,
    LogoutResponse,
    RegisterRequest,
    Role,
    UserCreateRequest,
    UserListItem,
    UserRecord,
    UsersListResponse,
    UserUpdateRequest,
)
from cinecriticas.schemas.health import HealthResponse

__all__ = [
    "AuthResponse",
    "Claims",
    "HealthResponse",
    "LoginRequest",
    "LogoutResponse",
    "RegisterRequest",
    "Role",
    "UserCreateRequest",
    "UserListItem",
    "UserRecord",
    "UsersListResponse",
    "UserUpdateRequest",
]
