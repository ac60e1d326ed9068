"""Periodic deletion of expired or revoked refresh tokens."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from repairdesk.core import metrics
from repairdesk.core.timeutil import utcnow
from repairdesk.db.session import Database
from repairdesk.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

JOB_ID = "refresh_token_cleanup"


class TokenCleanupSweeper:
    def __init__(
        self,
        db: Database,
        interval_seconds: int = 3600,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    async def sweep_once(self) -> int:
        async with self.db.session() as session:
            deleted = await CredentialStore(session).purge_refresh_tokens(self.clock())
        metrics.SWEPT_REFRESH_TOKENS.inc(deleted)
        return deleted

    async def run(self) -> None:
        """One scheduled tick. Failures are logged; the next tick runs regardless."""
        try:
            deleted = await self.sweep_once()
            logger.info("Token cleanup: removed %s expired or revoked refresh tokens", deleted)
        except Exception as e:
            logger.exception("Token cleanup failed: %s", e)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if not self.enabled:
            logger.info("Token cleanup disabled")
            return
        if self.running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Token cleanup scheduled every %ss", self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
