"""Security audit trail: auth successes/failures and revocations, written off the response path."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from repairdesk.db.session import Database, database
from repairdesk.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            ip_address=ip_address,
        )
    )
    await session.flush()


class AuditTrail:
    """
    Records events in their own session so failed requests (which roll back) are still audited.
    Writes run as background tasks; a failed write is logged and dropped.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._pending: set[asyncio.Task] = set()

    def record(
        self,
        action: str,
        *,
        user_id: int | None = None,
        resource: str = "auth",
        resource_id: str | int | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> None:
        logger.info(
            "audit action=%s user_id=%s resource=%s resource_id=%s ip=%s",
            action, user_id, resource, resource_id, ip_address,
        )
        task = asyncio.create_task(
            self._write(user_id, action, resource, resource_id, details, ip_address)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, user_id, action, resource, resource_id, details, ip_address) -> None:
        try:
            async with self._db.session() as session:
                await log_action(session, user_id, action, resource, resource_id, details, ip_address)
        except Exception as e:
            logger.warning("Audit: failed to write %s for user_id=%s: %s", action, user_id, e)

    async def drain(self) -> None:
        """Wait for queued writes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


audit_trail = AuditTrail(database)
