import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from models.league import League
from schemas.imports import LeagueRef
from ingestion.progress import ProgressTracker
from ingestion.sync import IncrementalSyncPlanner

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Periodic jobs:
    - incremental sync for every active league that needs it
    - removal of old finished progress checkpoints
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        planner: IncrementalSyncPlanner,
        tracker: ProgressTracker,
        interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory
        self.planner = planner
        self.tracker = tracker
        self.interval_minutes = interval_minutes or settings.SYNC_CHECK_INTERVAL_MINUTES

    async def run_sync_job(self) -> int:
        """Sync every active league that needs it; returns the number synced"""
        logger.info("Scheduler: Checking leagues for incremental sync")
        async with self.session_factory() as session:
            result = await session.execute(select(League).where(League.is_active.is_(True)))
            leagues = [LeagueRef(
                league_id=row.id,
                provider_league_id=row.provider_league_id,
                credentials_ref=row.credentials_ref,
                sport=row.sport,
            ) for row in result.scalars().all()]

        synced = 0
        for league in leagues:
            try:
                if not await self.planner.is_sync_needed(league.league_id):
                    continue
                await self.planner.sync_incremental(league)
                synced += 1
            except Exception as e:
                logger.error(f"Scheduler: Sync failed for league {league.league_id} - {e}")

        logger.info(f"Scheduler: Synced {synced} of {len(leagues)} active leagues")
        return synced

    async def run_cleanup_job(self) -> int:
        try:
            return await self.tracker.cleanup_old_checkpoints()
        except Exception as e:
            logger.error(f"Scheduler: Checkpoint cleanup failed - {e}")
            return 0

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="incremental_sync",
            replace_existing=True
        )
        self.scheduler.add_job(
            self.run_cleanup_job,
            trigger=IntervalTrigger(hours=24),
            id="checkpoint_cleanup",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info("Sync Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
