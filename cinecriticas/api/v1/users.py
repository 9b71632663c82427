"""User administration (admin only)."""

from fastapi import APIRouter, HTTPException, Response, status

from cinecriticas.api.deps import AdminUser, UserStoreDep
from cinecriticas.schemas.auth import (
    UserCreateRequest,
    UserListItem,
    UsersListResponse,
    UserUpdateRequest,
)
from cinecriticas.services import auth as auth_service
from cinecriticas.services.auth import (
    EmailTakenError,
    SelfDeleteError,
    UsernameTakenError,
    UserNotFoundError,
    ValidationFailedError,
)

router = APIRouter()


@router.get("", response_model=UsersListResponse)
def list_users(_admin: AdminUser, store: UserStoreDep) -> UsersListResponse:
    """List all users, newest first."""
    return UsersListResponse(
        users=[UserListItem.model_validate(u) for u in store.list_users()]
    )


@router.post("", response_model=UserListItem, status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreateRequest,
    admin: AdminUser,
    store: UserStoreDep,
) -> UserListItem:
    try:
        user = auth_service.create_user_as_admin(
            store, admin, body.username, body.email, body.password, body.role
        )
    except ValidationFailedError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    except (UsernameTakenError, EmailTakenError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return UserListItem.model_validate(user)


@router.patch("/{user_id}", response_model=UserListItem)
def update_user(
    user_id: int,
    body: UserUpdateRequest,
    admin: AdminUser,
    store: UserStoreDep,
) -> UserListItem:
    """
    Update profile fields and/or role. The target's existing sessions and
    tokens keep their old claims until they expire.
    """
    try:
        user = auth_service.update_user(
            store,
            admin,
            user_id,
            username=body.username,
            email=body.email,
            password=body.password,
            role=body.role,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except ValidationFailedError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e
    except (UsernameTakenError, EmailTakenError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return UserListItem.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, admin: AdminUser, store: UserStoreDep) -> Response:
    try:
        auth_service.delete_user(store, admin, user_id)
    except SelfDeleteError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
