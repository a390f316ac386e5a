"""
Context Sweeper

Periodically folds context windows that are about to expire, so turns
that were never pushed out by the window limit still reach the summary
before the expiring store drops them.

Runs on an APScheduler AsyncIOScheduler in the application's event loop.
sweep_once() is the whole job and can be called directly.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chatledger.config import ConversationSettings, get_settings
from chatledger.conversation.context_cache import ConversationContextCache
from chatledger.services.cache import CacheError
from chatledger.services.storage import StorageError


logger = structlog.get_logger(__name__)


class ContextSweeper:
    """
    Scheduled fold of near-expiry context windows.

    Usage:
        sweeper = ContextSweeper(context_cache)
        sweeper.start()      # inside a running event loop
        ...
        sweeper.stop()
    """

    JOB_ID = "context_sweep"

    def __init__(
        self,
        context_cache: ConversationContextCache,
        settings: Optional[ConversationSettings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self._cache = context_cache
        self._settings = settings or get_settings().conversation
        self.scheduler = scheduler or AsyncIOScheduler(timezone=get_settings().app.timezone)

    async def sweep_once(self) -> int:
        """
        Scan every live context window once.

        A failure on one target is logged and the scan moves on.

        Returns:
            Number of windows folded
        """
        low_water = self._settings.sweep_low_water_seconds
        folded = 0
        for key in await self._cache.keys():
            target_id = self._cache.target_from_key(key)
            if target_id is None:
                continue
            try:
                if await self._cache.fold_if_expiring(target_id, low_water):
                    folded += 1
            except (CacheError, StorageError) as e:
                logger.error("sweep_target_failed", target_id=str(target_id), error=str(e))

        if folded:
            logger.info("sweep_completed", folded=folded)
        return folded

    async def _run_job(self) -> None:
        try:
            await self.sweep_once()
        except CacheError as e:
            logger.error("sweep_failed", error=str(e))

    def start(self) -> None:
        trigger = IntervalTrigger(seconds=self._settings.sweep_interval_seconds)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self._settings.sweep_interval_seconds,
        )
        self.scheduler.start()
        logger.info("sweeper_started", interval_seconds=self._settings.sweep_interval_seconds)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("sweeper_stopped")
