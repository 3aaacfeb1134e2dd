"""
Checkpoint and progress tracking for long-running import jobs.

State lives in memory while a job runs and is written to the
import_checkpoints table every CHECKPOINT_ITEM_INTERVAL items or every
CHECKPOINT_TIME_INTERVAL_SECONDS, whichever comes first. Checkpoint writes
are best effort: a failed write is logged and the job carries on.
"""

from typing import Callable, Dict, List, Optional
from datetime import datetime, timedelta
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from models.base import ImportStatus
from models.checkpoint import ImportCheckpoint
from schemas.imports import (
    ImportProgressData, ProgressCheckpoint, ProgressError, ImportRunStats
)
from ingestion.events import (
    EventBus, LoggingEventBus,
    TRACKER_STARTED, TRACKER_PROGRESS, TRACKER_RESUMED,
    TRACKER_COMPLETED, TRACKER_FAILED, TRACKER_PAUSED
)
from ingestion.loaders.league_loader import dialect_insert
import logging

logger = logging.getLogger(__name__)


def format_duration(ms: float) -> str:
    """Human readable duration: 1h 5m, 3m 20s, 42s"""
    seconds = int(max(ms, 0) // 1000)
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


class ProgressTracker:
    """
    Durable, resumable progress bookkeeping keyed by import id.

    Finished entries stay in memory for PROGRESS_RETENTION_SECONDS so
    late status polls still see them, then are evicted on next access.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        event_bus: Optional[EventBus] = None,
        checkpoint_item_interval: Optional[int] = None,
        checkpoint_time_interval: Optional[float] = None,
        history_size: Optional[int] = None,
        error_history_size: Optional[int] = None,
        retention_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.session_factory = session_factory
        self.event_bus = event_bus or LoggingEventBus()
        self.checkpoint_item_interval = checkpoint_item_interval or settings.CHECKPOINT_ITEM_INTERVAL
        self.checkpoint_time_interval = (
            checkpoint_time_interval if checkpoint_time_interval is not None
            else settings.CHECKPOINT_TIME_INTERVAL_SECONDS
        )
        self.history_size = history_size or settings.CHECKPOINT_HISTORY_SIZE
        self.error_history_size = error_history_size or settings.CHECKPOINT_ERROR_HISTORY_SIZE
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None
            else settings.PROGRESS_RETENTION_SECONDS
        )
        self.clock = clock
        self._progress: Dict[str, ImportProgressData] = {}

    # ========================================================================
    # In-memory access
    # ========================================================================

    def _purge_expired(self):
        now = self.clock()
        expired = [
            import_id for import_id, progress in self._progress.items()
            if progress.evict_at is not None and progress.evict_at <= now
        ]
        for import_id in expired:
            del self._progress[import_id]

    def get_progress(self, import_id: str) -> Optional[ImportProgressData]:
        self._purge_expired()
        return self._progress.get(import_id)

    def get_active_imports(self) -> List[ImportProgressData]:
        self._purge_expired()
        return [p for p in self._progress.values() if p.status == ImportStatus.RUNNING]

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start_tracking(self, import_id: str, league_id: str, total_items: int) -> ImportProgressData:
        now = self.clock()
        progress = ImportProgressData(
            import_id=import_id,
            league_id=league_id,
            total_items=total_items,
            start_time=now,
            last_checkpoint_at=now,
        )
        self._progress[import_id] = progress
        await self.save_checkpoint(import_id)
        await self.event_bus.emit(TRACKER_STARTED, import_id, league_id, {"total_items": total_items})
        logger.info(f"Tracking import {import_id} ({total_items} items)")
        return progress

    async def update_progress(
        self,
        import_id: str,
        processed_delta: int = 1,
        operation: Optional[str] = None,
        season: Optional[int] = None,
        week: Optional[int] = None
    ) -> Optional[ImportProgressData]:
        """
        Advance counters, refresh the ETA and checkpoint when a threshold is crossed.
        """
        progress = self._progress.get(import_id)
        if progress is None:
            logger.warning(f"update_progress called for untracked import {import_id}")
            return None

        now = self.clock()
        progress.processed_items += processed_delta
        progress.items_since_checkpoint += processed_delta
        if operation is not None:
            progress.current_operation = operation
        if season is not None:
            progress.current_season = season
        if week is not None:
            progress.current_week = week

        progress.estimated_time_remaining_ms = self._estimate_remaining_ms(progress, now)

        seconds_since_checkpoint = (now - progress.last_checkpoint_at).total_seconds()
        if (
            progress.items_since_checkpoint >= self.checkpoint_item_interval
            or seconds_since_checkpoint >= self.checkpoint_time_interval
        ):
            self._push_checkpoint(progress, now)
            await self.save_checkpoint(import_id)

        await self.event_bus.emit(TRACKER_PROGRESS, import_id, progress.league_id, {
            "processed_items": progress.processed_items,
            "total_items": progress.total_items,
            "percentage": progress.percentage,
            "operation": progress.current_operation,
            "season": progress.current_season,
            "week": progress.current_week,
            "estimated_time_remaining_ms": progress.estimated_time_remaining_ms,
        })
        return progress

    async def record_error(
        self,
        import_id: str,
        message: str,
        operation: Optional[str] = None,
        season: Optional[int] = None,
        week: Optional[int] = None
    ):
        progress = self._progress.get(import_id)
        if progress is None:
            return
        progress.errors.append(ProgressError(
            timestamp=self.clock(),
            message=message,
            operation=operation,
            season=season,
            week=week,
        ))
        del progress.errors[:-self.error_history_size]

    async def resume_from_checkpoint(self, import_id: str) -> Optional[ImportProgressData]:
        """
        Reload the last durable state. The start time is reset so the paused
        interval does not inflate the ETA.
        """
        try:
            async with self.session_factory() as session:
                row = await session.get(ImportCheckpoint, import_id)
        except Exception as e:
            logger.error(f"Failed to load checkpoint for import {import_id}: {e}")
            return None

        if row is None:
            return None

        now = self.clock()
        data = row.checkpoint_data or {}
        progress = ImportProgressData(
            import_id=row.import_id,
            league_id=row.league_id,
            status=ImportStatus.RUNNING,
            total_items=row.total_items,
            processed_items=row.processed_items,
            current_operation=row.current_operation,
            current_season=row.current_season,
            current_week=row.current_week,
            start_time=now,
            last_checkpoint_at=now,
            items_at_start=row.processed_items,
            checkpoints=[ProgressCheckpoint(**c) for c in data.get("checkpoints", [])],
            errors=[ProgressError(**e) for e in data.get("errors", [])],
        )
        self._progress[import_id] = progress
        await self.save_checkpoint(import_id)
        await self.event_bus.emit(TRACKER_RESUMED, import_id, progress.league_id, {
            "processed_items": progress.processed_items,
            "total_items": progress.total_items,
        })
        logger.info(f"Resumed tracking import {import_id} at {progress.processed_items}/{progress.total_items}")
        return progress

    async def complete_import(self, import_id: str) -> Optional[ImportProgressData]:
        progress = await self._finish(import_id, ImportStatus.COMPLETED)
        if progress is not None:
            await self.event_bus.emit(TRACKER_COMPLETED, import_id, progress.league_id, {
                "processed_items": progress.processed_items,
                "duration_ms": int((self.clock() - progress.start_time).total_seconds() * 1000),
            })
        return progress

    async def fail_import(self, import_id: str, error: str) -> Optional[ImportProgressData]:
        progress = self._progress.get(import_id)
        if progress is not None:
            await self.record_error(import_id, error, operation=progress.current_operation)
        progress = await self._finish(import_id, ImportStatus.FAILED)
        if progress is not None:
            await self.event_bus.emit(TRACKER_FAILED, import_id, progress.league_id, {"error": error})
        return progress

    async def pause_import(self, import_id: str) -> Optional[ImportProgressData]:
        progress = await self._finish(import_id, ImportStatus.PAUSED)
        if progress is not None:
            await self.event_bus.emit(TRACKER_PAUSED, import_id, progress.league_id, {
                "processed_items": progress.processed_items,
            })
        return progress

    async def _finish(self, import_id: str, status: ImportStatus) -> Optional[ImportProgressData]:
        progress = self._progress.get(import_id)
        if progress is None:
            return None

        now = self.clock()
        progress.status = status
        if status == ImportStatus.COMPLETED:
            progress.processed_items = max(progress.processed_items, progress.total_items)
            progress.estimated_time_remaining_ms = 0
        self._push_checkpoint(progress, now)
        await self.save_checkpoint(import_id)
        progress.evict_at = now + timedelta(seconds=self.retention_seconds)
        return progress

    # ========================================================================
    # Persistence
    # ========================================================================

    def _push_checkpoint(self, progress: ImportProgressData, now: datetime):
        progress.checkpoints.append(ProgressCheckpoint(
            timestamp=now,
            processed_items=progress.processed_items,
            operation=progress.current_operation,
            season=progress.current_season,
            week=progress.current_week,
        ))
        del progress.checkpoints[:-self.history_size]
        progress.items_since_checkpoint = 0
        progress.last_checkpoint_at = now

    async def save_checkpoint(self, import_id: str) -> bool:
        """Persist the in-memory state. Never raises."""
        progress = self._progress.get(import_id)
        if progress is None:
            return False

        try:
            async with self.session_factory() as session:
                now = self.clock()
                stmt = dialect_insert(session, ImportCheckpoint).values(
                    import_id=progress.import_id,
                    league_id=progress.league_id,
                    processed_items=progress.processed_items,
                    total_items=progress.total_items,
                    current_operation=progress.current_operation,
                    current_season=progress.current_season,
                    current_week=progress.current_week,
                    estimated_time_remaining_ms=progress.estimated_time_remaining_ms,
                    status=progress.status,
                    checkpoint_data={
                        "checkpoints": [c.model_dump(mode="json") for c in progress.checkpoints],
                        "errors": [e.model_dump(mode="json") for e in progress.errors],
                    },
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["import_id"],
                    set_={
                        "processed_items": stmt.excluded.processed_items,
                        "total_items": stmt.excluded.total_items,
                        "current_operation": stmt.excluded.current_operation,
                        "current_season": stmt.excluded.current_season,
                        "current_week": stmt.excluded.current_week,
                        "estimated_time_remaining_ms": stmt.excluded.estimated_time_remaining_ms,
                        "status": stmt.excluded.status,
                        "checkpoint_data": stmt.excluded.checkpoint_data,
                        "updated_at": stmt.excluded.updated_at,
                    }
                )
                await session.execute(stmt)
                await session.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to save checkpoint for import {import_id}: {e}")
            return False

    async def cleanup_old_checkpoints(self, retention_days: Optional[int] = None) -> int:
        """Delete completed/failed checkpoints older than the retention window"""
        retention_days = retention_days if retention_days is not None else settings.CHECKPOINT_RETENTION_DAYS
        cutoff = self.clock() - timedelta(days=retention_days)

        async with self.session_factory() as session:
            result = await session.execute(
                delete(ImportCheckpoint).where(
                    ImportCheckpoint.status.in_([ImportStatus.COMPLETED, ImportStatus.FAILED]),
                    ImportCheckpoint.updated_at < cutoff
                )
            )
            await session.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Cleaned up {deleted} checkpoints older than {retention_days} days")
        return deleted

    async def get_import_history(self, league_id: str, limit: int = 10) -> List[ImportCheckpoint]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportCheckpoint)
                .where(ImportCheckpoint.league_id == league_id)
                .order_by(ImportCheckpoint.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ========================================================================
    # Statistics
    # ========================================================================

    def _estimate_remaining_ms(self, progress: ImportProgressData, now: datetime) -> Optional[int]:
        processed_since_start = progress.processed_items - progress.items_at_start
        if processed_since_start <= 0:
            return None
        elapsed_ms = (now - progress.start_time).total_seconds() * 1000
        remaining_items = max(progress.total_items - progress.processed_items, 0)
        return int(elapsed_ms / processed_since_start * remaining_items)

    def calculate_stats(self, import_id: str) -> Optional[ImportRunStats]:
        progress = self.get_progress(import_id)
        if progress is None:
            return None

        elapsed_ms = (self.clock() - progress.start_time).total_seconds() * 1000
        processed_since_start = progress.processed_items - progress.items_at_start
        items_per_second = processed_since_start / (elapsed_ms / 1000) if elapsed_ms > 0 else 0.0
        remaining_items = max(progress.total_items - progress.processed_items, 0)
        remaining_ms = remaining_items / items_per_second * 1000 if items_per_second > 0 else 0

        return ImportRunStats(
            items_per_second=round(items_per_second, 1),
            percent_complete=progress.percentage,
            estimated_time_remaining=format_duration(remaining_ms),
            elapsed_time=format_duration(elapsed_ms),
        )
