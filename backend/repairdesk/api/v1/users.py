"""User administration (admin only): list users, update role / name / active flag."""

from typing import Annotated

from fastapi import APIRouter, Depends

from repairdesk.api.deps import get_credential_store, require_admin
from repairdesk.core.timeutil import as_utc
from repairdesk.models.user import User
from repairdesk.schemas.auth import MessageResponse, UpdateUserBody, UserAdminOut, UsersResponse
from repairdesk.services.credential_store import CredentialStore
from repairdesk.services.sessions import Principal
from repairdesk.services.users import update_user

router = APIRouter(prefix="/auth/users", tags=["users"])


def _user_out(user: User) -> UserAdminOut:
    return UserAdminOut(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        is_active=user.is_active,
        created_at=as_utc(user.created_at),
        last_login=as_utc(user.last_login) if user.last_login else None,
    )


@router.get(
    "",
    response_model=UsersResponse,
    summary="List all users, newest first",
    responses={401: {"description": "Not authenticated"}, 403: {"description": "Insufficient permissions"}},
)
async def list_users(
    admin: Annotated[Principal, Depends(require_admin)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> UsersResponse:
    return UsersResponse(data=[_user_out(u) for u in await store.list_users()])


@router.put(
    "/{user_id}",
    response_model=MessageResponse,
    summary="Update a user; deactivation revokes their sessions",
    responses={
        400: {"description": "Missing fields or invalid role"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "User not found"},
    },
)
async def update(
    user_id: int,
    body: UpdateUserBody,
    admin: Annotated[Principal, Depends(require_admin)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> MessageResponse:
    await update_user(store, user_id, full_name=body.full_name, role=body.role, is_active=body.is_active)
    return MessageResponse(message="User updated successfully")
