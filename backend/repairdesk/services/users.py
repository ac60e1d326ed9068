"""Admin-side user management: register, list, update role/active flag."""

from __future__ import annotations

import logging

from repairdesk.core.auth import hash_password_async, is_storable_text
from repairdesk.core.errors import Conflict, NotFound, ValidationFailed
from repairdesk.models.user import Role, User
from repairdesk.services.credential_store import CredentialStore
from repairdesk.services.sessions import MIN_PASSWORD_LENGTH

logger = logging.getLogger(__name__)

VALID_ROLES = tuple(r.value for r in Role)


def _check_role(role: str | None) -> str:
    if role not in VALID_ROLES:
        raise ValidationFailed("Invalid role. Must be admin, manager, or employee")
    return role


async def register_user(
    store: CredentialStore,
    *,
    username: str | None,
    email: str | None,
    password: str | None,
    full_name: str | None,
    role: str | None = Role.employee.value,
) -> User:
    username = (username or "").strip()
    email = (email or "").strip()
    full_name = (full_name or "").strip()
    if not username or not email or not password or not full_name:
        raise ValidationFailed("Username, email, password, and full name are required")
    if not all(is_storable_text(v) for v in (username, email, full_name)):
        raise ValidationFailed("Username, email, and full name must be valid text")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    role = _check_role(role or Role.employee.value)
    if await store.username_or_email_taken(username, email):
        raise Conflict()
    user = await store.create_user(
        username=username,
        email=email,
        password_hash=await hash_password_async(password),
        full_name=full_name,
        role=role,
    )
    logger.info("Registered user_id=%s username=%s role=%s", user.id, user.username, user.role)
    return user


async def update_user(
    store: CredentialStore,
    user_id: int,
    *,
    full_name: str | None,
    role: str | None,
    is_active: bool | None,
) -> User:
    """Admin update. Deactivating a user also revokes their refresh tokens."""
    full_name = (full_name or "").strip()
    if not full_name or not role or is_active is None:
        raise ValidationFailed("Full name, role, and active status are required")
    if not is_storable_text(full_name):
        raise ValidationFailed("Full name must be valid text")
    if role not in VALID_ROLES:
        raise ValidationFailed("Invalid role")
    user = await store.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    user.full_name = full_name
    user.role = role
    user.is_active = is_active
    await store.session.flush()
    if not is_active:
        await store.revoke_all_for_user(user_id)
    return user
