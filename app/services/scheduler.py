"""
Scheduler Service

Runs scheduled background jobs using APScheduler.

Jobs:
- Stale Sweep: Every STALE_SWEEP_INTERVAL_MINUTES, flips ledger rows stuck
  IN_PROGRESS (no terminal deploy event arrived) to UNKNOWN
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.state_ledger import StateLedger
from app.config import get_settings

logger = logging.getLogger(__name__)


class BuildStateScheduler:
    """
    Build-state scheduler.

    Manages background jobs with APScheduler.
    """

    def __init__(self, ledger: StateLedger):
        """
        Initialize scheduler.

        Args:
            ledger: Build-state ledger to reconcile
        """
        self.ledger = ledger
        self.settings = get_settings()
        self.scheduler = AsyncIOScheduler()

    async def _run_stale_sweep(self):
        """
        Run stale sweep job.

        Marks IN_PROGRESS rows older than the threshold as UNKNOWN.
        """
        try:
            logger.info("Stale sweep job started")
            updated = await self.ledger.mark_stale_in_progress(self.settings.STALE_IN_PROGRESS_MINUTES)
            logger.info(f"Stale sweep job completed: {updated} row(s) marked UNKNOWN")
        except Exception as e:
            logger.error(f"Stale sweep job failed: {e}", exc_info=True)

    def start(self):
        """
        Start the scheduler.

        Adds all scheduled jobs and starts the scheduler.
        """
        logger.info("Starting build-state scheduler...")

        self.scheduler.add_job(
            self._run_stale_sweep,
            trigger=IntervalTrigger(minutes=self.settings.STALE_SWEEP_INTERVAL_MINUTES),
            id='stale_sweep',
            name='Stale IN_PROGRESS Sweep',
            max_instances=1,  # Only one instance at a time
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Build-state scheduler started")

    def shutdown(self):
        """
        Shutdown the scheduler.

        Waits for running jobs to complete before shutting down.
        """
        logger.info("Shutting down build-state scheduler...")
        self.scheduler.shutdown(wait=True)
        logger.info("Build-state scheduler shutdown complete")
