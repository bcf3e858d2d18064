"""
Scheduler for the periodic stage sync
- Full finance <-> sales sync every SYNC_INTERVAL_MINUTES (0 = off)
- A run is skipped while the previous one is still going
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dealdesk.config import Settings, get_settings, get_db
from dealdesk.services.status_sync import sync_all_deals

logger = logging.getLogger("scheduler")


class SyncScheduler:
    """Runs sync_all_deals on an interval"""

    def __init__(self, db=None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.db = db
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.is_running = False
        self.last_result: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return self.settings.sync_interval_minutes > 0

    def start(self):
        """Starts the scheduler (no-op when the interval is 0)"""
        if not self.enabled:
            logger.info("[SCHEDULER] Periodic sync disabled (SYNC_INTERVAL_MINUTES=0)")
            return

        self.scheduler.add_job(
            self.run_sync,
            IntervalTrigger(minutes=self.settings.sync_interval_minutes),
            id="status_sync",
            name="Finance/sales stage sync",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(f"[SCHEDULER] Periodic sync every {self.settings.sync_interval_minutes} min")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("[SCHEDULER] Stopped")

    async def run_sync(self) -> Optional[int]:
        if self.is_running:
            logger.info("[SCHEDULER] Sync already running, skipping")
            return None

        self.is_running = True
        try:
            db = self.db if self.db is not None else get_db()
            self.last_result = await sync_all_deals(db)
            return self.last_result
        except Exception as e:
            logger.error(f"[SCHEDULER] Sync failed: {e}")
            return None
        finally:
            self.is_running = False

    def status(self) -> dict:
        return {
            "enabled": self.enabled,
            "running": self.scheduler.running,
            "sync_in_progress": self.is_running,
            "interval_minutes": self.settings.sync_interval_minutes,
            "last_result": self.last_result,
        }


sync_scheduler: Optional[SyncScheduler] = None
