"""Request/response schemas for auth and user administration, plus the identity value types."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "admin"]


class Claims(BaseModel):
    """Public identity claims shared by the session and the token. Never holds the password hash."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    username: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserRecord(BaseModel):
    """Stored user as returned by a UserStore (store-independent value type)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    username: str
    email: str
    password_hash: str = Field(repr=False)
    role: Role = "user"
    created_at: datetime


class LoginRequest(BaseModel):
    """Credentials for login. Emptiness is checked by the auth service."""

    username: str = Field(default="", description="Username")
    password: str = Field(default="", description="Password")


class RegisterRequest(BaseModel):
    """Self-service registration. Validation rules live in the auth service."""

    username: str = Field(default="", description="Username (3-30 characters)")
    email: str = Field(default="", description="Email address")
    password: str = Field(default="", description="Password (at least 6 characters)")
    confirm_password: str = Field(
        default="",
        alias="confirmPassword",
        description="Must equal password",
    )

    model_config = ConfigDict(populate_by_name=True)


class AuthResponse(BaseModel):
    """Token and claims returned after a successful login or registration."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user: Claims


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Logged out"


class UserListItem(BaseModel):
    """User entry for admin list (no password)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: Role
    created_at: datetime


class UsersListResponse(BaseModel):
    """Response for GET /users (admin only)."""

    users: list[UserListItem]


class UserCreateRequest(BaseModel):
    """Admin-initiated account creation with an explicit role."""

    username: str
    email: str
    password: str
    role: Role = "user"


class UserUpdateRequest(BaseModel):
    """Partial profile/role update; omitted fields are left unchanged."""

    username: str | None = None
    email: str | None = None
    password: str | None = None
    role: Role | None = None
