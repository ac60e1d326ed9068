"""Auth: login, refresh (rotation), logout, logout-all, sessions, me, register, change-password."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from repairdesk.api.deps import (
    get_client_info,
    get_credential_store,
    get_current_user,
    get_session_manager,
    require_admin,
)
from repairdesk.config import settings
from repairdesk.core.rate_limit import limiter
from repairdesk.core.timeutil import as_utc
from repairdesk.schemas.auth import (
    ChangePasswordBody,
    LoginBody,
    LogoutBody,
    MeData,
    MeResponse,
    MessageResponse,
    RefreshBody,
    RegisterBody,
    RegisteredUser,
    RegisterResponse,
    SessionOut,
    SessionsResponse,
    TokenPair,
    TokenResponse,
    UserOut,
)
from repairdesk.services.credential_store import CredentialStore
from repairdesk.services.sessions import ClientInfo, Principal, SessionManager
from repairdesk.services.users import register_user

router = APIRouter(prefix="/auth", tags=["auth"])


async def _logout_token(request: Request) -> str | None:
    try:
        payload = await request.json()
    except ValueError:
        return None
    token = payload.get("refreshToken") if isinstance(payload, dict) else None
    return token if isinstance(token, str) else None


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with username or email and password",
    responses={
        400: {"description": "Username and password are required"},
        401: {"description": "Invalid credentials"},
    },
)
@limiter.limit(settings.login_rate_limit)
async def login(
    request: Request,
    body: LoginBody,
    manager: Annotated[SessionManager, Depends(get_session_manager)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
) -> TokenResponse:
    issued = await manager.login(body.username, body.password, client)
    return TokenResponse(data=TokenPair.from_issued(issued))


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={401: {"description": "Refresh token required, invalid or expired"}},
)
@limiter.limit(settings.login_rate_limit)
async def refresh_tokens(
    request: Request,
    body: RefreshBody,
    manager: Annotated[SessionManager, Depends(get_session_manager)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
) -> TokenResponse:
    """The presented refresh token is revoked; only the returned one is usable afterwards."""
    issued = await manager.refresh(body.refreshToken, client)
    return TokenResponse(data=TokenPair.from_issued(issued))


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke a refresh token",
    openapi_extra={
        "requestBody": {"required": False, "content": {"application/json": {"schema": LogoutBody.model_json_schema()}}}
    },
)
async def logout(
    request: Request,
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> MessageResponse:
    """Always succeeds. The body is read by hand so a missing or malformed one is ignored, not rejected."""
    await manager.logout(await _logout_token(request))
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/logout-all",
    response_model=MessageResponse,
    summary="Revoke every refresh token of the current user",
    responses={401: {"description": "Not authenticated"}},
)
async def logout_all(
    principal: Annotated[Principal, Depends(get_current_user)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> MessageResponse:
    await manager.logout_all(principal.id)
    return MessageResponse(message="Logged out from all devices successfully")


@router.get(
    "/sessions",
    response_model=SessionsResponse,
    summary="Active sessions of the current user, most recently used first",
    responses={401: {"description": "Not authenticated"}},
)
async def list_sessions(
    principal: Annotated[Principal, Depends(get_current_user)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> SessionsResponse:
    rows = await manager.list_sessions(principal.id)
    return SessionsResponse(
        data=[
            SessionOut(
                id=row.id,
                created_at=as_utc(row.created_at),
                last_used_at=as_utc(row.last_used_at),
                user_agent=row.user_agent,
                ip_address=row.ip_address,
            )
            for row in rows
        ]
    )


@router.delete(
    "/sessions/{session_id}",
    response_model=MessageResponse,
    summary="Revoke one of the current user's sessions",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Session not found"}},
)
async def revoke_session(
    session_id: int,
    principal: Annotated[Principal, Depends(get_current_user)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> MessageResponse:
    await manager.revoke_session(principal.id, session_id)
    return MessageResponse(message="Session revoked successfully")


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated or invalid token"}},
)
async def me(principal: Annotated[Principal, Depends(get_current_user)]) -> MeResponse:
    return MeResponse(data=MeData(user=UserOut.from_principal(principal)))


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user (admin only)",
    responses={
        400: {"description": "Missing fields, weak password, invalid role or duplicate user"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def register(
    body: RegisterBody,
    admin: Annotated[Principal, Depends(require_admin)],
    store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> RegisterResponse:
    user = await register_user(
        store,
        username=body.username,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        role=body.role,
    )
    return RegisterResponse(
        data=RegisteredUser(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            role=user.role,
        )
    )


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change own password; revokes all sessions",
    responses={
        400: {"description": "Missing fields, weak new password or wrong current password"},
        401: {"description": "Not authenticated"},
    },
)
async def change_password(
    body: ChangePasswordBody,
    principal: Annotated[Principal, Depends(get_current_user)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> MessageResponse:
    await manager.change_password(principal.id, body.currentPassword, body.newPassword)
    return MessageResponse(message="Password changed successfully")
