"""Cron-driven pipeline scheduling (APScheduler)."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from newsimpact.errors import PipelineAlreadyRunningError
from newsimpact.ingestion.article_types import RunSummary

logger = logging.getLogger(__name__)

JOB_ID = "news_impact_pipeline"


class PipelineScheduler:
    """Fires ``run`` on a crontab cadence; an in-flight run makes the tick a no-op."""

    def __init__(self, cron_schedule: str, run: Callable[[], Awaitable[RunSummary]], *, enabled: bool = True):
        self.cron_schedule = cron_schedule
        self.enabled = enabled
        self._run = run
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def tick(self) -> Optional[RunSummary]:
        try:
            summary = await self._run()
        except PipelineAlreadyRunningError:
            logger.info("Skipping scheduled run because pipeline is already running")
            return None
        except Exception as e:
            logger.error(f"Pipeline cron run failed: {e}", exc_info=True)
            return None
        logger.info(f"Pipeline cron run completed: {summary.as_dict()}")
        return summary

    def start(self) -> bool:
        """Start the scheduler (needs a running event loop); False when disabled."""
        if not self.enabled:
            logger.info("Pipeline cron scheduling disabled by config")
            return False
        if self._scheduler is not None:
            return True
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.tick,
            CronTrigger.from_crontab(self.cron_schedule, timezone="UTC"),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Pipeline scheduler started (schedule: {self.cron_schedule})")
        return True

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Pipeline scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None
