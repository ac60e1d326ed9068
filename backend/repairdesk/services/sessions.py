"""
Session lifecycle: login, refresh-token rotation, logout, logout-all, password change, session listing.

A refresh-token row is ACTIVE while is_revoked is false and now <= expires_at. REVOKED is terminal
(rotation, logout, logout-all, session delete, password change); EXPIRED is only ever evaluated,
never written. Rotation flips is_revoked with a conditional UPDATE so that among concurrent callers
presenting the same token exactly one wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from repairdesk.config import Settings, settings
from repairdesk.core import metrics
from repairdesk.core.auth import (
    hash_password_async,
    is_storable_text,
    verify_password_async,
    verify_unknown_user_async,
)
from repairdesk.core.errors import (
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidOrExpiredToken,
    NotFound,
    ValidationFailed,
)
from repairdesk.core.timeutil import as_utc, utcnow
from repairdesk.core.tokens import TokenCodec, create_refresh_token, hash_refresh_token, parse_ttl
from repairdesk.models.refresh_token import RefreshToken
from repairdesk.models.user import User
from repairdesk.services.audit import AuditTrail
from repairdesk.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Principal:
    id: int
    username: str
    email: str
    role: str
    full_name: str

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            full_name=user.full_name,
        )


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    user: Principal
    access_ttl: str
    refresh_ttl: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    session_id: int


@dataclass(frozen=True)
class ClientInfo:
    user_agent: str | None = None
    ip_address: str | None = None


def validate_new_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")


class SessionManager:
    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        audit: AuditTrail,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.audit = audit
        self.config = config
        self.clock = clock

    async def _issue(self, user: User, client: ClientInfo) -> IssuedTokens:
        now = self.clock()
        access_token, access_expires_at = self.codec.issue_access(
            user.id, parse_ttl(self.config.jwt_access_expires_in)
        )
        refresh_plain = create_refresh_token()
        refresh_expires_at = now + parse_ttl(self.config.jwt_refresh_expires_in)
        row = await self.store.add_refresh_token(
            user_id=user.id,
            token_hash=hash_refresh_token(refresh_plain),
            expires_at=refresh_expires_at,
            now=now,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
        )
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_plain,
            user=Principal.from_user(user),
            access_ttl=self.config.jwt_access_expires_in,
            refresh_ttl=self.config.jwt_refresh_expires_in,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            session_id=row.id,
        )

    async def login(self, identifier: str | None, password: str | None, client: ClientInfo = ClientInfo()) -> IssuedTokens:
        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise ValidationFailed("Username and password are required")

        # Text that cannot be bound as a query parameter cannot name a stored user
        user = await self.store.get_active_user_by_identifier(identifier) if is_storable_text(identifier) else None
        # Unknown user and wrong password are indistinguishable to the caller, in body and in bcrypt cost
        if user is None:
            verified = await verify_unknown_user_async(password)
        else:
            verified = await verify_password_async(password, user.password_hash)
        if not verified:
            metrics.LOGIN_ATTEMPTS.labels(outcome="failure").inc()
            self.audit.record(
                "login_failed",
                user_id=user.id if user else None,
                details={"identifier": identifier},
                ip_address=client.ip_address,
            )
            raise InvalidCredentials()

        now = self.clock()
        purged = await self.store.purge_user_refresh_tokens(user.id, now)
        if purged:
            logger.debug("Purged %s stale refresh tokens for user_id=%s", purged, user.id)
        await self.store.touch_last_login(user, now)
        issued = await self._issue(user, client)

        metrics.LOGIN_ATTEMPTS.labels(outcome="success").inc()
        self.audit.record("login", user_id=user.id, ip_address=client.ip_address)
        return issued

    async def refresh(self, raw_token: str | None, client: ClientInfo = ClientInfo()) -> IssuedTokens:
        raw_token = (raw_token or "").strip()
        if not raw_token:
            raise InvalidOrExpiredToken("Refresh token required")
        token_hash = hash_refresh_token(raw_token)

        found = await self.store.find_usable_refresh_token(token_hash)
        if found is None:
            await self._detect_reuse(token_hash, client)
            metrics.TOKEN_REFRESHES.labels(outcome="rejected").inc()
            raise InvalidOrExpiredToken()
        row, user = found

        now = self.clock()
        if now > as_utc(row.expires_at):
            metrics.TOKEN_REFRESHES.labels(outcome="expired").inc()
            raise InvalidOrExpiredToken()

        if not await self.store.revoke_if_active(row.id, now):
            # Another request rotated this token between our read and our write
            metrics.TOKEN_REFRESHES.labels(outcome="race_lost").inc()
            logger.warning("Refresh token %s rotated concurrently; rejecting duplicate", row.id)
            raise InvalidOrExpiredToken()

        issued = await self._issue(user, client)
        # Old row revoked and new row inserted become visible together
        await self.store.session.commit()

        metrics.TOKEN_REFRESHES.labels(outcome="success").inc()
        self.audit.record(
            "token_refresh",
            user_id=user.id,
            resource="refresh_token",
            resource_id=row.id,
            details={"replaced_by": issued.session_id},
            ip_address=client.ip_address,
        )
        return issued

    async def _detect_reuse(self, token_hash: str, client: ClientInfo) -> None:
        """A revoked row matching the hash means an already-rotated token was replayed."""
        stale = await self.store.find_refresh_token(token_hash)
        if stale is not None and stale.is_revoked:
            metrics.REFRESH_TOKEN_REUSE.inc()
            logger.warning("Revoked refresh token %s presented again (user_id=%s)", stale.id, stale.user_id)
            self.audit.record(
                "refresh_token_reuse",
                user_id=stale.user_id,
                resource="refresh_token",
                resource_id=stale.id,
                ip_address=client.ip_address,
            )

    async def logout(self, raw_token: str | None) -> None:
        """Revoke the presented refresh token if it exists. Never fails on unknown tokens."""
        raw_token = (raw_token or "").strip()
        if not raw_token:
            return
        revoked = await self.store.revoke_by_hash(hash_refresh_token(raw_token))
        if revoked:
            self.audit.record("logout")

    async def logout_all(self, user_id: int) -> int:
        count = await self.store.revoke_all_for_user(user_id)
        self.audit.record("logout_all", user_id=user_id, details={"revoked": count})
        return count

    async def change_password(self, user_id: int, current_password: str | None, new_password: str | None) -> None:
        if not current_password or not new_password:
            raise ValidationFailed("Current password and new password are required")
        validate_new_password(new_password)

        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if not await verify_password_async(current_password, user.password_hash):
            self.audit.record("change_password_failed", user_id=user_id)
            raise InvalidCurrentPassword()

        await self.store.set_password_hash(user, await hash_password_async(new_password))
        # Force re-authentication everywhere
        count = await self.store.revoke_all_for_user(user_id)
        self.audit.record("change_password", user_id=user_id, details={"revoked": count})

    async def list_sessions(self, user_id: int) -> list[RefreshToken]:
        return await self.store.list_active_refresh_tokens(user_id, self.clock())

    async def revoke_session(self, user_id: int, session_id: int) -> None:
        if not await self.store.revoke_owned(session_id, user_id):
            raise NotFound("Session not found")
        self.audit.record("session_revoked", user_id=user_id, resource="refresh_token", resource_id=session_id)
