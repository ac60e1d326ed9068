"""
User and refresh-token persistence. One instance per AsyncSession; every method is one round-trip.
Revocation helpers are conditional UPDATEs so callers can rely on the affected-row count.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from repairdesk.models.refresh_token import RefreshToken
from repairdesk.models.user import User


class CredentialStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- users ---

    async def get_user(self, user_id: int) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def get_active_user_by_identifier(self, identifier: str) -> User | None:
        """Match username OR email of an active user."""
        r = await self.session.execute(
            select(User).where(
                or_(User.username == identifier, User.email == identifier),
                User.is_active.is_(True),
            )
        )
        return r.scalars().first()

    async def username_or_email_taken(self, username: str, email: str) -> bool:
        r = await self.session.execute(
            select(User.id).where(or_(User.username == username, User.email == email)).limit(1)
        )
        return r.scalar_one_or_none() is not None

    async def create_user(
        self,
        *,
        username: str,
        email: str,
        password_hash: str,
        full_name: str,
        role: str,
    ) -> User:
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            full_name=full_name,
            role=role,
        )
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def list_users(self) -> list[User]:
        r = await self.session.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return list(r.scalars().all())

    async def touch_last_login(self, user: User, now: datetime) -> None:
        user.last_login = now
        await self.session.flush()

    async def set_password_hash(self, user: User, password_hash: str) -> None:
        user.password_hash = password_hash
        await self.session.flush()

    # --- refresh tokens ---

    async def add_refresh_token(
        self,
        *,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=now,
            last_used_at=now,
            user_agent=user_agent,
            ip_address=ip_address,
            is_revoked=False,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def find_usable_refresh_token(self, token_hash: str) -> tuple[RefreshToken, User] | None:
        """Non-revoked row owned by an active user. Expiry is left to the caller's clock."""
        r = await self.session.execute(
            select(RefreshToken, User)
            .join(User, RefreshToken.user_id == User.id)
            .where(
                RefreshToken.token_hash == token_hash,
                RefreshToken.is_revoked.is_(False),
                User.is_active.is_(True),
            )
        )
        row = r.first()
        return (row[0], row[1]) if row else None

    async def find_refresh_token(self, token_hash: str) -> RefreshToken | None:
        r = await self.session.execute(select(RefreshToken).where(RefreshToken.token_hash == token_hash))
        return r.scalar_one_or_none()

    async def revoke_if_active(self, token_id: int, now: datetime) -> bool:
        """Flip is_revoked false -> true. Only one concurrent caller can see True."""
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_by_hash(self, token_hash: str) -> int:
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == token_hash)
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_all_for_user(self, user_id: int) -> int:
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_owned(self, token_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.user_id == user_id)
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def list_active_refresh_tokens(self, user_id: int, now: datetime) -> list[RefreshToken]:
        r = await self.session.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.expires_at > now,
                RefreshToken.is_revoked.is_(False),
            )
            .order_by(RefreshToken.last_used_at.desc(), RefreshToken.id.desc())
        )
        return list(r.scalars().all())

    async def purge_user_refresh_tokens(self, user_id: int, now: datetime) -> int:
        result = await self.session.execute(
            delete(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                or_(RefreshToken.expires_at < now, RefreshToken.is_revoked.is_(True)),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def purge_refresh_tokens(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(RefreshToken)
            .where(or_(RefreshToken.expires_at < now, RefreshToken.is_revoked.is_(True)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
