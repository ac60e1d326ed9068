"""FastAPI dependencies: session manager wiring, current principal from JWT, role checks."""

from collections.abc import Callable, Collection
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from repairdesk.core.errors import (
    AuthenticationRequired,
    InsufficientPermissions,
    MissingToken,
    PrincipalUnavailable,
)
from repairdesk.core.tokens import TokenCodec
from repairdesk.db.session import get_db
from repairdesk.models.user import Role
from repairdesk.services.audit import AuditTrail, audit_trail
from repairdesk.services.credential_store import CredentialStore
from repairdesk.services.sessions import ClientInfo, Principal, SessionManager


def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings()


def get_audit_trail() -> AuditTrail:
    return audit_trail


def get_credential_store(session: Annotated[AsyncSession, Depends(get_db)]) -> CredentialStore:
    return CredentialStore(session)


def get_session_manager(
    store: Annotated[CredentialStore, Depends(get_credential_store)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
) -> SessionManager:
    return SessionManager(store, codec, audit)


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.client.host if request.client else None,
    )


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise MissingToken()
    token = authorization[7:].strip()
    if not token:
        raise MissingToken()
    return token


async def authenticate(authorization: str | None, store: CredentialStore, codec: TokenCodec) -> Principal:
    """Resolve a bearer header to a Principal. Codec errors propagate with their own codes."""
    user_id = codec.verify_access(bearer_token(authorization))
    user = await store.get_user(user_id)
    if user is None or not user.is_active:
        raise PrincipalUnavailable()
    return Principal.from_user(user)


def authorize(principal: Principal | None, allowed: Collection[str]) -> Principal:
    if principal is None:
        raise AuthenticationRequired()
    if principal.role not in allowed:
        raise InsufficientPermissions()
    return principal


async def get_current_user(
    request: Request,
    store: Annotated[CredentialStore, Depends(get_credential_store)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> Principal:
    principal = await authenticate(request.headers.get("Authorization"), store, codec)
    request.state.principal = principal
    return principal


def require_roles(*roles: Role | str) -> Callable[..., Principal]:
    """Dependency factory: current principal must hold one of the given roles."""
    allowed = frozenset(r.value if isinstance(r, Role) else r for r in roles)

    async def dependency(principal: Annotated[Principal, Depends(get_current_user)]) -> Principal:
        return authorize(principal, allowed)

    return dependency


require_admin = require_roles(Role.admin)
require_manager_or_admin = require_roles(Role.admin, Role.manager)
